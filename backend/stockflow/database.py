"""
데이터베이스 엔진 및 세션 관리
- 기본은 SQLite, DATABASE_URL로 교체 가능.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from stockflow.config import settings


def build_engine(url: str):
    """URL에 맞는 엔진 생성"""
    if url.startswith("sqlite"):
        # SQLite에서는 check_same_thread=False 필요 (executor 스레드에서 사용)
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(url, pool_pre_ping=True, echo=False)


def build_session_factory(bind):
    """서비스 계층이 사용하는 세션 팩토리. 커밋 후에도 속성 접근 가능하도록 만료하지 않는다."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = build_session_factory(engine)

Base = declarative_base()
