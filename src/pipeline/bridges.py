"""Collaborator interfaces the pipeline talks to but does not implement."""

from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from models.pipeline import PipelineLogEntry
from models.project import AdProject, ProjectSettings


class PersistenceBridge(Protocol):
    """Best-effort project storage.

    Failures are expected to surface as None (or an exception, which the
    pipeline logs and ignores); none of them may affect phase progression.
    """

    async def save_project(
        self, project: AdProject, settings: Optional[ProjectSettings] = None
    ) -> Optional[str]: ...

    async def load_latest_project(self) -> Optional[AdProject]: ...

    async def upload_media(self, owner_id: str, media: str, kind: Any) -> Optional[str]: ...


# Presentation callbacks may be plain functions or coroutine functions. Their
# return values are never used and coroutine results are not awaited.
ProjectCallback = Callable[[AdProject], Union[None, Awaitable[None]]]
LogCallback = Callable[[PipelineLogEntry], Union[None, Awaitable[None]]]
