"""
애플리케이션 설정
- DB, Redis, 실시간 채널, 재고 정책 관련 설정을 관리한다.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # 데이터베이스
    DATABASE_URL: str = "sqlite:///stockflow.db"

    # Redis (없으면 인메모리 큐로 fallback)
    REDIS_URL: str = "redis://localhost:6379"

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # 로그 레벨
    LOG_LEVEL: str = "INFO"

    # 동시 수정 충돌 시 내부 재시도 횟수
    CONCURRENT_WRITE_RETRIES: int = 1

    # 로케이션 코드 구분자 / 파트별 최대 길이
    LOCATION_DELIMITER: str = "-"
    LOCATION_PART_MAX_LENGTH: int = 10

    # 재고 변경 이벤트 토픽
    CHANGE_FEED_TOPIC: str = "inventory.changed"

    # 인메모리 이벤트 큐 크기 (포화 시 가장 오래된 이벤트를 버리고 갭 신호)
    EVENT_QUEUE_SIZE: int = 10000

    # 입고(add) 시 버킷 미지정이면 적재할 기본 버킷 ("overstock" | "picking_bin")
    DEFAULT_ADD_BUCKET: str = "overstock"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
