"""
core/logger.py — News Content Extractor 구조화 로깅

아키텍처:
    structlog ──► stdlib.LoggerFactory ──► 핸들러
                                           ├── StreamHandler     (콘솔, stderr)
                                           │     개발: 컬러 콘솔
                                           │     프로덕션: JSON
                                           └── RotatingFileHandler (선택)
                                                 항상 JSON
                                                 10 MB 초과 시 자동 교체

    콘솔 핸들러는 stderr 를 사용합니다. 도구 호출 서버가 stdout 을
    프로토콜 채널로 쓰기 때문에 로그가 응답 스트림에 섞이면 안 됩니다.

Context Injection:
    url / phase / strategy / batch_id 가 contextvars 로 자동 포함됩니다.
    asyncio Task 별로 격리되므로 배치 내 동시 추출에서도 섞이지 않습니다.

────────────────────────────────────────────────────────────────
빠른 시작:

    from core.logger import configure_logging, get_logger, log_context, Phase
    configure_logging()

    logger = get_logger(__name__)
    with log_context(url=url, phase=Phase.FETCH, strategy="Naver"):
        logger.info("fetch_start")
────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
import logging.handlers
import socket
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import structlog
from structlog.stdlib import ProcessorFormatter

# ─────────────────────────────────────────────────────────────
# 처리 단계 상수
# ─────────────────────────────────────────────────────────────

class Phase:
    """
    로그 컨텍스트에 사용하는 처리 단계 식별자.

    Usage:
        with log_context(phase=Phase.BROWSER):
            logger.info("page_open")
    """
    FETCH   = "Fetch"           # 정적 HTTP 수집
    BROWSER = "Browser"         # 헤드리스 브라우저 조작
    PARSE   = "Parse"           # DOM 분석 / 점수화
    BATCH   = "Batch"           # 배치 오케스트레이션
    CLEANUP = "Cleanup"         # 브라우저 리소스 정리
    INIT    = "Initialization"  # 초기화



_HOSTNAME       = socket.gethostname()
_SERVICE        = "news-extractor"
_LOG_FILENAME   = "extractor.log"
_ROTATE_BYTES   = 10 * 1024 * 1024
_ROTATE_BACKUPS = 5

# INFO 로 두면 요청 헤더·CDP 메시지가 넘칩니다.
_QUIET_LIBRARIES = (
    "urllib3",
    "asyncio",
    "playwright",
    "readability",
    "charset_normalizer",
)


# ─────────────────────────────────────────────────────────────
# 프로세서 체인
# ─────────────────────────────────────────────────────────────

def _add_service_context(
    logger: Any, method: str, event_dict: dict
) -> dict:
    event_dict.setdefault("service", _SERVICE)
    event_dict.setdefault("host",    _HOSTNAME)
    return event_dict


def _rename_event_to_message(
    logger: Any, method: str, event_dict: dict
) -> dict:
    """파일 JSON 전용: 'event' → 'message'."""
    event_dict["message"] = event_dict.pop("event", "")
    return event_dict


def _shared_processors() -> list:
    """
    structlog 로그와 stdlib 로그(foreign_pre_chain)가 함께 거치는 체인.

    contextvars 병합 → level/logger → '%s' 포매팅 → @timestamp(UTC)
    → stack_info → service/host
    """
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="@timestamp"),
        structlog.processors.StackInfoRenderer(),
        _add_service_context,
    ]


def _formatter(shared: list, *renderers: Any) -> ProcessorFormatter:
    return ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            structlog.processors.ExceptionRenderer(),
            *renderers,
        ],
    )


def _console_handler(shared: list, use_json: bool, level: int) -> logging.Handler:
    # stdout 은 도구 응답 채널이므로 로그는 stderr 로만 보냅니다.
    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), sort_keys=False)
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(shared, renderer))
    handler.setLevel(level)
    return handler


def _file_handler(shared: list, log_dir: Path, level: int) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename    = str(log_dir / _LOG_FILENAME),
        maxBytes    = _ROTATE_BYTES,
        backupCount = _ROTATE_BACKUPS,
        encoding    = "utf-8",
        delay       = True,  # 첫 기록 시 파일 생성
    )
    handler.setFormatter(
        _formatter(shared, _rename_event_to_message, structlog.processors.JSONRenderer())
    )
    handler.setLevel(level)
    return handler


# ─────────────────────────────────────────────────────────────
# 로깅 설정
# ─────────────────────────────────────────────────────────────

def configure_logging(
    level:     str | None  = None,
    json_logs: bool | None = None,
    log_file:  bool        = False,
) -> None:
    """
    structlog 을 stdlib logging 위에 얹어 설정합니다. 여러 번 호출해도
    루트 핸들러는 교체되므로 중복 출력이 생기지 않습니다.

    Args:
        level:     로그 레벨 (기본: Settings.LOG_LEVEL)
        json_logs: 콘솔 JSON 여부 (기본: production 이면 True)
        log_file:  LOG_DIR/extractor.log 회전 파일 사용 여부
    """
    from core.config import get_settings

    settings   = get_settings()
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level  = getattr(logging, level_name, logging.INFO)
    use_json   = settings.is_production if json_logs is None else json_logs
    log_dir    = Path(settings.LOG_DIR)
    shared     = _shared_processors()

    # wrap_for_formatter 는 체인의 마지막이어야 합니다.
    structlog.configure(
        processors=[*shared, ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    handlers = [_console_handler(shared, use_json, log_level)]
    if log_file:
        handlers.append(_file_handler(shared, log_dir, log_level))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(log_level)

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        level   = level_name,
        console = "json" if use_json else "color",
        file    = str(log_dir / _LOG_FILENAME) if log_file else "disabled",
        phase   = Phase.INIT,
    )


def ensure_logging() -> None:
    """configure_logging() 이 아직 호출되지 않았으면 Settings 기본값으로 호출합니다."""
    if not structlog.is_configured():
        configure_logging()


# ─────────────────────────────────────────────────────────────
# 로그 컨텍스트
# ─────────────────────────────────────────────────────────────

def bind_log_context(
    *,
    url:      Optional[str] = None,
    phase:    Optional[str] = None,
    strategy: Optional[str] = None,
    batch_id: Optional[str] = None,
    **extra: Any,
) -> Mapping[str, Any]:
    """
    현재 Task 의 로그 컨텍스트에 키를 추가/갱신합니다. None 인 값은 건너뜁니다.

    Returns:
        structlog 이 돌려준 contextvar 토큰 (log_context 가 복원에 사용)
    """
    ctx = {
        key: value
        for key, value in (
            ("url", url),
            ("phase", phase),
            ("strategy", strategy),
            ("batch_id", batch_id),
            *extra.items(),
        )
        if value is not None
    }
    if not ctx:
        return {}
    return structlog.contextvars.bind_contextvars(**ctx)


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(
    *,
    url:      Optional[str] = None,
    phase:    Optional[str] = None,
    strategy: Optional[str] = None,
    batch_id: Optional[str] = None,
    **extra: Any,
) -> Iterator[None]:
    """
    블록 안에서만 유효한 로그 컨텍스트. 블록을 벗어나면 바인딩한 키만
    이전 값으로 되돌리므로 중첩해도 바깥 컨텍스트가 유지됩니다.

        with log_context(batch_id="b1", phase=Phase.BATCH):
            with log_context(url=url, phase=Phase.FETCH):
                logger.info("fetch_start")   # batch_id=b1, url=..., phase=Fetch
            logger.info("chunk_done")        # batch_id=b1, phase=Batch
    """
    tokens = bind_log_context(
        url=url, phase=phase, strategy=strategy, batch_id=batch_id, **extra
    )
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def get_logger(name: str = __name__) -> Any:
    return structlog.get_logger(name)
