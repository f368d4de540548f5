from dataclasses import dataclass
from pathlib import Path
from typing import Optional

@dataclass(frozen=True)
class TargetRequest:
    """
    Input of the proxy pipeline for one inbound request.
    Read-only; discarded once the response is sent.
    """
    url: str
    caller_user_agent: Optional[str] = None

@dataclass(frozen=True)
class AssetReference:
    """
    A root-relative reference exactly as it appeared in the rendered markup.
    Equality is the literal string, which is what asset discovery dedupes on.
    """
    raw_url: str

@dataclass(frozen=True)
class MirroredAsset:
    """
    Result of mirroring one AssetReference.
    local_path is None when the asset could not be resolved or downloaded.
    """
    source_url: str
    local_path: Optional[Path] = None

    @property
    def available(self) -> bool:
        return self.local_path is not None
