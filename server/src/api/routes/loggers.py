from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

router = APIRouter(prefix="/api/admin/loggers", tags=["admin", "loggers"])

LEVEL_NAMES = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")


class LoggerInfo(BaseModel):
    name: str
    level: str


class SetLoggerRequest(BaseModel):
    name: str = Field(..., description="Logger name, e.g. 'root', 'services.collector' or 'api.call'")
    level: str = Field(..., description="One of CRITICAL/ERROR/WARNING/INFO/DEBUG/NOTSET")


def _describe(name: str, logger: logging.Logger) -> LoggerInfo:
    return LoggerInfo(name=name, level=logging.getLevelName(logger.getEffectiveLevel()))


@router.get("/", response_model=list[LoggerInfo])
async def list_loggers() -> list[LoggerInfo]:
    """Return known loggers and their effective levels, root first.

    Only loggers that already exist are listed; nothing is created.
    """
    out = [_describe("root", logging.getLogger())]
    for name, logger_obj in sorted(logging.root.manager.loggerDict.items()):
        # loggerDict holds PlaceHolder objects for intermediate package names.
        if isinstance(logger_obj, logging.Logger):
            out.append(_describe(name, logger_obj))
    return out


@router.post("/", response_model=LoggerInfo)
async def set_logger(req: SetLoggerRequest) -> LoggerInfo:
    """Set the named logger's level at runtime and return its effective level."""
    level = req.level.strip().upper()
    if level not in LEVEL_NAMES:
        raise HTTPException(status_code=400, detail=f"Unknown level: {req.level}")

    name = req.name.strip()
    logger = logging.getLogger() if name in ("", "root") else logging.getLogger(name)
    logger.setLevel(getattr(logging, level))
    return _describe(name or "root", logger)
