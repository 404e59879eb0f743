from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

if TYPE_CHECKING:
    from jobcore.v1.infra.jobs.router import JobContext

T = TypeVar("T")


class Registry(Generic[T]):
    """Named lookup table that can be sealed once startup wiring is done."""

    def __init__(self, name: str):
        self.name = name
        self._entries: dict[str, T] = {}
        self._frozen = False

    def _check_writable(self, action: str) -> None:
        if self._frozen:
            raise RuntimeError(
                f"Cannot {action} {self.name.lower()} registry: registry is frozen"
            )

    def register(self, name: str, implementation: T) -> None:
        """Bind ``name`` to ``implementation``; a later call replaces the binding."""
        self._check_writable(f"register '{name}' in")
        self._entries[name] = implementation

    def get(self, name: str) -> T:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            ) from None

    def list(self) -> list[str]:
        return sorted(self._entries)

    def clear(self) -> None:
        self._check_writable("clear")
        self._entries.clear()

    def freeze(self) -> None:
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class JobHandler(Protocol):
    async def handle(
        self,
        session: AsyncSession,
        context: "JobContext",
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        """
        Run one attempt of a job.

        A job may be attempted several times, so every attempt starts from
        what is in the database rather than from anything cached in memory.
        Return an optional result for the log; raise to fail the attempt.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Handlers keyed by job type value."""

    def __init__(self):
        super().__init__("Job")

    def unregistered(self, job_types: Iterable[str]) -> list[str]:
        """Job types from ``job_types`` that have no handler yet."""
        return [job_type for job_type in job_types if job_type not in self]


job_registry = JobRegistry()
