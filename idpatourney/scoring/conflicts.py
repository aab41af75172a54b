"""Detection and resolution of diverging score versions."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Optional

from idpatourney.constants import STANDARD_PENALTIES
from idpatourney.errors import ValidationError
from idpatourney.utils import parse_timestamp, to_millis

from .models import Penalties, StringScore, normalize_penalties, normalize_strings

logger = logging.getLogger(__name__)

USE_LOCAL = "use_local"
USE_SERVER = "use_server"
MERGE = "merge"


@dataclass
class ScoreVersion:
    """One side of a conflict: the score content plus who changed it and when."""

    strings: list[StringScore]
    penalties: Penalties
    dnf: bool = False
    dq: bool = False
    last_modified: Optional[datetime.datetime] = None
    modified_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScoreVersion:
        """Build a version from a score document or queue payload."""
        return cls(
            strings=normalize_strings(data.get("strings", [])),
            penalties=normalize_penalties(data.get("penalties")),
            dnf=bool(data.get("dnf", False)),
            dq=bool(data.get("dq", False)),
            last_modified=parse_timestamp(
                data.get("lastModified") or data.get("updatedAt")
            ),
            modified_by=data.get("modifiedBy") or data.get("scoredBy"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the version for JSON and Firestore."""
        return {
            "strings": self.strings,
            "penalties": self.penalties,
            "dnf": self.dnf,
            "dq": self.dq,
            "lastModified": to_millis(self.last_modified),
            "modifiedBy": self.modified_by,
        }

    def same_content(self, other: ScoreVersion) -> bool:
        """Whether both versions score the stage identically."""
        return (
            self.strings == other.strings
            and self.penalties == other.penalties
            and self.dnf == other.dnf
            and self.dq == other.dq
        )


@dataclass
class ConflictRecord:
    """A local score version that collides with a newer server version."""

    score_id: str
    stage_id: str
    shooter_id: str
    local: ScoreVersion
    server: ScoreVersion

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConflictRecord:
        """Rebuild a conflict stored on a failed queue item."""
        return cls(
            score_id=data["scoreId"],
            stage_id=data["stageId"],
            shooter_id=data["shooterId"],
            local=ScoreVersion.from_dict(data["local"]),
            server=ScoreVersion.from_dict(data["server"]),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the conflict with both versions."""
        return {
            "scoreId": self.score_id,
            "stageId": self.stage_id,
            "shooterId": self.shooter_id,
            "local": self.local.to_dict(),
            "server": self.server.to_dict(),
        }


@dataclass
class Resolution:
    """The version to write back and how it was chosen."""

    choice: str
    version: ScoreVersion
    automatic: bool = False
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize the resolution."""
        return {
            "choice": self.choice,
            "automatic": self.automatic,
            "reason": self.reason,
        }


def _hits_only(strings: list[StringScore]) -> list[dict[str, int]]:
    return [dict(string["hits"]) for string in strings]


class ConflictResolver:
    """Decides between a local and a server score version."""

    @staticmethod
    def detect(
        score_id: str,
        stage_id: str,
        shooter_id: str,
        local: ScoreVersion,
        server: ScoreVersion,
        base_version: datetime.datetime | None,
    ) -> ConflictRecord | None:
        """Return a conflict when the server changed after the local base version.

        A local version with no base has never seen the server copy, so any
        differing server copy conflicts with it.
        """
        if local.same_content(server):
            return None
        if (
            base_version is not None
            and server.last_modified is not None
            and server.last_modified <= base_version
        ):
            return None
        return ConflictRecord(score_id, stage_id, shooter_id, local, server)

    @staticmethod
    def merge_penalties(local: Penalties, server: Penalties) -> Penalties:
        """Take the larger count per standard penalty and the union of others."""
        merged: dict[str, Any] = {
            name: max(local.get(name, 0), server.get(name, 0))
            for name in STANDARD_PENALTIES
        }
        others = []
        for entry in list(server.get("other", [])) + list(local.get("other", [])):
            if entry not in others:
                others.append(entry)
        merged["other"] = others
        return merged  # type: ignore[return-value]

    @staticmethod
    def _merge_candidate(conflict: ConflictRecord) -> ScoreVersion | None:
        """Return the merged version when only penalties differ."""
        local, server = conflict.local, conflict.server
        if (
            local.strings != server.strings
            or local.dnf != server.dnf
            or local.dq != server.dq
        ):
            return None
        return ScoreVersion(
            strings=local.strings,
            penalties=ConflictResolver.merge_penalties(
                local.penalties, server.penalties
            ),
            dnf=local.dnf,
            dq=local.dq,
            last_modified=local.last_modified,
            modified_by=local.modified_by,
        )

    @staticmethod
    def auto_resolve(conflict: ConflictRecord) -> Resolution | None:
        """Apply the automatic rules in order; None means a person must choose."""
        local, server = conflict.local, conflict.server

        local_out = local.dnf or local.dq
        server_out = server.dnf or server.dq
        if local_out and not server_out:
            return Resolution(USE_LOCAL, local, True, "local DNF/DQ")
        if server_out and not local_out:
            return Resolution(USE_SERVER, server, True, "server DNF/DQ")

        if (
            _hits_only(local.strings) == _hits_only(server.strings)
            and local.penalties == server.penalties
        ):
            # Only the times differ; the most recent edit wins, server on ties
            local_time = local.last_modified
            server_time = server.last_modified
            if local_time is not None and (
                server_time is None or local_time > server_time
            ):
                return Resolution(USE_LOCAL, local, True, "later timing edit")
            return Resolution(USE_SERVER, server, True, "later timing edit")

        merged = ConflictResolver._merge_candidate(conflict)
        if merged is not None:
            return Resolution(MERGE, merged, True, "merged penalties")

        logger.info(f"Score {conflict.score_id} needs manual conflict resolution")
        return None

    @staticmethod
    def manual_options(conflict: ConflictRecord) -> dict[str, ScoreVersion]:
        """Return the versions a person may choose between."""
        options = {USE_LOCAL: conflict.local, USE_SERVER: conflict.server}
        merged = ConflictResolver._merge_candidate(conflict)
        if merged is not None:
            options[MERGE] = merged
        return options

    @staticmethod
    def resolve(conflict: ConflictRecord, choice: str) -> Resolution:
        """Turn a person's choice into a resolution."""
        options = ConflictResolver.manual_options(conflict)
        if choice not in options:
            raise ValidationError(
                f"Invalid resolution '{choice}'. Choose one of: "
                f"{', '.join(options)}"
            )
        return Resolution(choice, options[choice], False, "manual")
