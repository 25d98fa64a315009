"""
실시간 동기화 패키지
"""

from stockflow.realtime.reconciler import RealtimeReconciler, ReconcilerState

__all__ = ["RealtimeReconciler", "ReconcilerState"]
