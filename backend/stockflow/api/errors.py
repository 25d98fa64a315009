"""
예외 → HTTP 응답 변환
- StockflowError: {"error": code, "message": ..., "detail": {...}} + 예외별 상태 코드
- 그 외 예외: 500 + 로그
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockflow.exceptions import StockflowError

logger = logging.getLogger(__name__)


def setup_exception_handlers(app: FastAPI):

    @app.exception_handler(StockflowError)
    async def stockflow_exception_handler(request: Request, exc: StockflowError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} 실패: {exc.code} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} 거부: {exc.code} {exc.message}")
        return JSONResponse(content=exc.to_dict(), status_code=exc.http_status)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(f"처리되지 않은 예외: {request.method} {request.url.path}")
        return JSONResponse(
            content={"error": "INTERNAL_ERROR", "message": str(exc), "detail": {}},
            status_code=500,
        )
