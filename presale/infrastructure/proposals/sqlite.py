import json
import sqlite3
from contextlib import closing
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from presale.core.proposals.errors import (
    AlreadyConvertedError,
    ProposalStateConflictError,
    ProposalStorageError,
)
from presale.core.proposals.models import (
    IssuedPolicyRecord,
    ProposalConversionResult,
    ProposalRecord,
    ProposalSearchQuery,
)
from presale.core.proposals.normalization import load_proposal_record
from presale.core.proposals.repository import ProposalRepository, check_writable
from presale.core.proposals.search import filter_proposals, paginate
from presale.core.proposals.stages import is_converted


class SqliteProposalRepository(ProposalRepository):
    def __init__(self, *, database_path: str) -> None:
        self._lock = Lock()
        self._database_path = database_path
        self._init_db()

    def create_proposal(self, proposal: ProposalRecord) -> None:
        query = """
            INSERT INTO proposal_records (
                proposal_id,
                status,
                created_at,
                updated_at,
                version,
                payload_json
            ) VALUES (?, ?, ?, ?, ?, ?)
        """
        with self._lock, closing(self._connect()) as connection:
            try:
                connection.execute(query, _proposal_params(proposal))
            except sqlite3.IntegrityError as exc:
                raise ProposalStateConflictError(
                    "STATE_CONFLICT: proposal already exists"
                ) from exc
            except sqlite3.Error as exc:
                raise ProposalStorageError("PROPOSAL_STORE_WRITE_FAILED") from exc
            connection.commit()

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        query = """
            SELECT payload_json
            FROM proposal_records
            WHERE proposal_id = ?
        """
        with closing(self._connect()) as connection:
            row = self._fetchone(connection, query, (proposal_id,))
        return _to_proposal(row)

    def save_proposal(self, proposal: ProposalRecord, *, expected_version: int) -> None:
        with self._lock, closing(self._connect()) as connection:
            stored = _to_proposal(
                self._fetchone(
                    connection,
                    "SELECT payload_json FROM proposal_records WHERE proposal_id = ?",
                    (proposal.proposal_id,),
                )
            )
            check_writable(stored, expected_version=expected_version)
            self._update_proposal(connection, proposal, expected_version=expected_version)
            connection.commit()

    def delete_proposal(self, *, proposal_id: str) -> bool:
        with self._lock, closing(self._connect()) as connection:
            stored = _to_proposal(
                self._fetchone(
                    connection,
                    "SELECT payload_json FROM proposal_records WHERE proposal_id = ?",
                    (proposal_id,),
                )
            )
            if stored is None:
                return False
            if is_converted(stored):
                raise AlreadyConvertedError("PROPOSAL_ALREADY_CONVERTED")
            try:
                connection.execute(
                    "DELETE FROM proposal_records WHERE proposal_id = ?", (proposal_id,)
                )
            except sqlite3.Error as exc:
                raise ProposalStorageError("PROPOSAL_STORE_WRITE_FAILED") from exc
            connection.commit()
            return True

    def list_proposals(
        self,
        *,
        query: Optional[ProposalSearchQuery],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ProposalRecord], Optional[str]]:
        statement = """
            SELECT payload_json
            FROM proposal_records
            ORDER BY created_at DESC, proposal_id DESC
        """
        with closing(self._connect()) as connection:
            try:
                rows = connection.execute(statement).fetchall()
            except sqlite3.Error as exc:
                raise ProposalStorageError("PROPOSAL_STORE_READ_FAILED") from exc
        proposals = [_to_proposal(row) for row in rows]
        return paginate(
            filter_proposals([p for p in proposals if p is not None], query),
            limit=limit,
            cursor=cursor,
        )

    def convert_proposal(
        self,
        *,
        proposal: ProposalRecord,
        issued_policy: IssuedPolicyRecord,
        expected_version: int,
    ) -> ProposalConversionResult:
        insert_policy = """
            INSERT INTO issued_policies (
                policy_number,
                certificate_number,
                proposal_id,
                issued_at,
                payload_json
            ) VALUES (?, ?, ?, ?, ?)
        """
        with self._lock, closing(self._connect()) as connection:
            stored = _to_proposal(
                self._fetchone(
                    connection,
                    "SELECT payload_json FROM proposal_records WHERE proposal_id = ?",
                    (proposal.proposal_id,),
                )
            )
            check_writable(stored, expected_version=expected_version)
            try:
                connection.execute(
                    insert_policy,
                    (
                        issued_policy.policy_number,
                        issued_policy.certificate_number,
                        issued_policy.proposal_id,
                        issued_policy.issued_at.isoformat(),
                        _json_dump(issued_policy.model_dump(mode="json")),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                connection.rollback()
                raise ProposalStateConflictError(
                    "STATE_CONFLICT: policy number already issued"
                ) from exc
            except sqlite3.Error as exc:
                connection.rollback()
                raise ProposalStorageError("PROPOSAL_STORE_WRITE_FAILED") from exc
            self._update_proposal(connection, proposal, expected_version=expected_version)
            connection.commit()
        return ProposalConversionResult(proposal=proposal, issued_policy=issued_policy)

    def get_issued_policy(self, *, policy_number: str) -> Optional[IssuedPolicyRecord]:
        query = """
            SELECT payload_json
            FROM issued_policies
            WHERE policy_number = ?
        """
        with closing(self._connect()) as connection:
            row = self._fetchone(connection, query, (policy_number,))
        if row is None:
            return None
        return IssuedPolicyRecord.model_validate(json.loads(row["payload_json"]))

    def _update_proposal(
        self, connection: sqlite3.Connection, proposal: ProposalRecord, *, expected_version: int
    ) -> None:
        query = """
            UPDATE proposal_records SET
                status = ?,
                updated_at = ?,
                version = ?,
                payload_json = ?
            WHERE proposal_id = ? AND version = ?
        """
        try:
            cursor = connection.execute(
                query,
                (
                    proposal.status,
                    proposal.updated_at.isoformat(),
                    proposal.version,
                    _json_dump(proposal.model_dump(mode="json")),
                    proposal.proposal_id,
                    expected_version,
                ),
            )
        except sqlite3.Error as exc:
            connection.rollback()
            raise ProposalStorageError("PROPOSAL_STORE_WRITE_FAILED") from exc
        if cursor.rowcount != 1:
            connection.rollback()
            raise ProposalStateConflictError("STATE_CONFLICT: version mismatch")

    def _fetchone(
        self, connection: sqlite3.Connection, query: str, args: tuple[Any, ...]
    ) -> Optional[sqlite3.Row]:
        try:
            return connection.execute(query, args).fetchone()
        except sqlite3.Error as exc:
            raise ProposalStorageError("PROPOSAL_STORE_READ_FAILED") from exc

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._database_path)
        connection.row_factory = sqlite3.Row
        return connection

    def _init_db(self) -> None:
        Path(self._database_path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as connection:
            connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS proposal_records (
                    proposal_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    payload_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS issued_policies (
                    policy_number TEXT PRIMARY KEY,
                    certificate_number TEXT NOT NULL UNIQUE,
                    proposal_id TEXT NOT NULL UNIQUE,
                    issued_at TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                );
                """
            )
            connection.commit()


def _proposal_params(proposal: ProposalRecord) -> tuple[Any, ...]:
    return (
        proposal.proposal_id,
        proposal.status,
        proposal.created_at.isoformat(),
        proposal.updated_at.isoformat(),
        proposal.version,
        _json_dump(proposal.model_dump(mode="json")),
    )


def _json_dump(value: dict) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _to_proposal(row: Optional[sqlite3.Row]) -> Optional[ProposalRecord]:
    if row is None:
        return None
    return load_proposal_record(json.loads(row["payload_json"]))
