"""
Append-only log of save attempts (save_action_log table).

Rows are never updated. The log doubles as the idempotency ledger: a prior
successful row for (workspace, user, thread, track) means the track was
already saved from that thread.
"""

from savethebeat.db.helpers import DatabaseError, fetch_one, with_db_retry
from savethebeat.infrastructure.observability.logging import get_logger
from savethebeat.models.domain.save_action_domain import (
    SaveAction,
    SaveActionCreate,
    SaveStatus,
)

logger = get_logger(__name__)

SUCCESSFUL_STATUSES = (SaveStatus.SAVED.value, SaveStatus.ALREADY_SAVED.value)


class SaveActionRepository:
    SELECT_COLUMNS = """
        id, slack_workspace_id, slack_user_id, channel_id, thread_ts,
        mention_ts, spotify_track_id, status, error_code, error_message,
        created_at
    """

    @classmethod
    def _row_to_action(cls, row: dict | None) -> SaveAction | None:
        if not row:
            return None

        return SaveAction(
            id=str(row["id"]),
            slack_workspace_id=row["slack_workspace_id"],
            slack_user_id=row["slack_user_id"],
            channel_id=row["channel_id"],
            thread_ts=row["thread_ts"],
            mention_ts=row["mention_ts"],
            spotify_track_id=row["spotify_track_id"],
            status=row["status"],
            error_code=row.get("error_code"),
            error_message=row.get("error_message"),
            created_at=row["created_at"],
        )

    @with_db_retry()
    async def find(
        self, workspace_id: str, user_id: str, thread_ts: str, track_id: str
    ) -> SaveAction | None:
        """Earliest successful save of this track from this thread, if any."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM save_action_log
            WHERE slack_workspace_id = %s
              AND slack_user_id = %s
              AND thread_ts = %s
              AND spotify_track_id = %s
              AND status IN (%s, %s)
            ORDER BY created_at ASC
            LIMIT 1
        """
        row = await fetch_one(
            query, (workspace_id, user_id, thread_ts, track_id, *SUCCESSFUL_STATUSES)
        )
        return self._row_to_action(row)

    async def append(self, action: SaveActionCreate) -> SaveAction:
        """
        Insert one log row.

        Raises:
            StorageConflict: If a concurrent 'saved' row for the same key won
            DatabaseError: On any other failure
        """
        query = f"""
            INSERT INTO save_action_log (
                slack_workspace_id, slack_user_id, channel_id, thread_ts,
                mention_ts, spotify_track_id, status, error_code, error_message
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                action.slack_workspace_id,
                action.slack_user_id,
                action.channel_id,
                action.thread_ts,
                action.mention_ts,
                action.spotify_track_id,
                action.status.value,
                action.error_code.value if action.error_code else None,
                (action.error_message or "")[:500] or None,
            ),
        )
        if not row:
            raise DatabaseError("Failed to append save action", operation="append_save_action")

        logger.info(
            "Save action recorded",
            slack_workspace_id=action.slack_workspace_id,
            slack_user_id=action.slack_user_id,
            spotify_track_id=action.spotify_track_id,
            status=action.status.value,
        )
        return self._row_to_action(row)
