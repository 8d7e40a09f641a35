# greedy_eye/errors.py
from decimal import Decimal
from enum import Enum
from typing import Optional

from .models import Asset, ExplorationJob


class ErrorKind(Enum):
    """
    Why a job was abandoned. Every kind is terminal for the job;
    only the transport itself is recovered (by reconnecting).
    """
    INVALID_JOB = "INVALID_JOB"
    UNKNOWN_ASSET = "UNKNOWN_ASSET"
    INDEX_UNAVAILABLE = "INDEX_UNAVAILABLE"
    TRANSPORT = "TRANSPORT"
    BAD_RESPONSE = "BAD_RESPONSE"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


class EngineError(Exception):
    """
    Error delivered on the engine's error stream.
    Carries enough of the job to let a caller decide whether to resubmit.
    """
    def __init__(self, kind: ErrorKind, message: str, job_id: Optional[str] = None,
                 from_asset: Optional[Asset] = None, to_asset: Optional[Asset] = None,
                 from_amount: Optional[Decimal] = None):
        self.kind = kind
        self.message = message
        self.job_id = job_id
        self.from_asset = from_asset
        self.to_asset = to_asset
        self.from_amount = from_amount
        super().__init__(f"{kind.value}: {message}")

    @classmethod
    def for_job(cls, kind: ErrorKind, message: str, job: ExplorationJob) -> "EngineError":
        return cls(
            kind,
            message,
            job_id=job.id,
            from_asset=job.from_asset,
            to_asset=job.to_asset,
            from_amount=job.last_from_amount,
        )

    def __str__(self):
        pair = f"{self.from_asset}->{self.to_asset}" if self.from_asset else "-"
        amount = f" @ {self.from_amount}" if self.from_amount is not None else ""
        return f"{self.kind.value} [{pair}{amount}]: {self.message}"


class TransportError(Exception):
    """I/O failure on the venue connection. `generation` identifies the connection."""
    def __init__(self, message: str, generation: int = 0):
        self.generation = generation
        super().__init__(message)


class BadResponseError(Exception):
    """A venue frame that cannot be interpreted. `req_id` is set when it could be read."""
    def __init__(self, message: str, req_id: Optional[int] = None):
        self.req_id = req_id
        super().__init__(message)


class AssetMissingError(KeyError):
    """No index price stored for the asset."""


class UnknownAssetError(KeyError):
    """No venue address configured for the asset."""


class ConfigError(ValueError):
    pass
