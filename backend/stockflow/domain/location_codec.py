"""
로케이션 코덱 — 창고 위치 5개 파트(area/row/bay/level/pos) ↔ 정규 문자열 변환.

정규 문자열은 파트를 고정 순서로 구분자("-")로 이은 것이다. 예: "A-01-01-1-A"
파트에는 영문/숫자만 허용하므로 구분자가 파트 안에 들어갈 수 없고,
build/parse는 서로의 역함수가 된다. 상태 없음.
"""

import re
from dataclasses import dataclass, fields

from stockflow.config import settings
from stockflow.exceptions import LocationFormatError

PART_NAMES = ("area", "row", "bay", "level", "pos")

_TOKEN_RE = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class LocationParts:
    """로케이션 5개 파트"""
    area: str
    row: str
    bay: str
    level: str
    pos: str

    def as_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _check_token(name: str, value, max_length: int) -> str:
    if not isinstance(value, str) or not value:
        raise LocationFormatError(f"로케이션 파트 '{name}'가 비어 있습니다", value=value if isinstance(value, str) else None)
    if len(value) > max_length:
        raise LocationFormatError(f"로케이션 파트 '{name}' 길이 초과 (최대 {max_length}자): {value}", value=value)
    if not _TOKEN_RE.match(value):
        raise LocationFormatError(f"로케이션 파트 '{name}'에는 영문/숫자만 허용됩니다: {value}", value=value)
    return value


def build(
    parts: LocationParts,
    delimiter: str = settings.LOCATION_DELIMITER,
    max_length: int = settings.LOCATION_PART_MAX_LENGTH,
) -> str:
    """LocationParts → 정규 문자열. 빈 파트가 하나라도 있으면 LocationFormatError."""
    tokens = [_check_token(name, getattr(parts, name), max_length) for name in PART_NAMES]
    return delimiter.join(tokens)


def parse(
    canonical: str,
    delimiter: str = settings.LOCATION_DELIMITER,
    max_length: int = settings.LOCATION_PART_MAX_LENGTH,
) -> LocationParts:
    """정규 문자열 → LocationParts. 정확히 5개의 비어 있지 않은 토큰이 아니면 LocationFormatError."""
    if not isinstance(canonical, str) or not canonical:
        raise LocationFormatError("로케이션 문자열이 비어 있습니다", value=None)

    tokens = canonical.split(delimiter)
    if len(tokens) != len(PART_NAMES):
        raise LocationFormatError(
            f"로케이션 문자열은 {len(PART_NAMES)}개 파트여야 합니다 (현재 {len(tokens)}개): {canonical}",
            value=canonical,
        )

    for name, token in zip(PART_NAMES, tokens):
        try:
            _check_token(name, token, max_length)
        except LocationFormatError as e:
            raise LocationFormatError(f"{e.message} (입력: {canonical})", value=canonical) from e

    return LocationParts(*tokens)


def is_canonical(value: str) -> bool:
    """value가 정규 로케이션 문자열인지 여부"""
    try:
        parse(value)
    except LocationFormatError:
        return False
    return True


def unique_parts(locations: list[str], part: str) -> list[str]:
    """
    로케이션 문자열 목록에서 특정 파트의 고유값을 정렬해 반환한다.
    형식이 맞지 않는 문자열은 건너뛴다.
    """
    if part not in PART_NAMES:
        raise LocationFormatError(f"알 수 없는 로케이션 파트: {part}", value=part)

    values = set()
    for location in locations:
        try:
            parsed = parse(location)
        except LocationFormatError:
            continue
        values.add(getattr(parsed, part))
    return sorted(values)
