import json
from contextlib import closing
from importlib.util import find_spec
from typing import Any, Optional

from presale.core.proposals.errors import (
    AlreadyConvertedError,
    ProposalStateConflictError,
)
from presale.core.proposals.models import (
    IssuedPolicyRecord,
    ProposalConversionResult,
    ProposalRecord,
    ProposalSearchQuery,
)
from presale.core.proposals.normalization import load_proposal_record
from presale.core.proposals.repository import check_writable
from presale.core.proposals.search import filter_proposals, paginate
from presale.core.proposals.stages import is_converted
from presale.infrastructure.postgres_migrations import apply_postgres_migrations


class PostgresProposalRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("PROPOSAL_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("PROPOSAL_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
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
            ) VALUES (%s, %s, %s, %s, %s, %s::jsonb)
            ON CONFLICT (proposal_id) DO NOTHING
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (
                    proposal.proposal_id,
                    proposal.status,
                    proposal.created_at.isoformat(),
                    proposal.updated_at.isoformat(),
                    proposal.version,
                    _json_dump(proposal.model_dump(mode="json")),
                ),
            )
            if cursor.rowcount != 1:
                connection.rollback()
                raise ProposalStateConflictError("STATE_CONFLICT: proposal already exists")
            connection.commit()

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        query = """
            SELECT payload_json
            FROM proposal_records
            WHERE proposal_id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (proposal_id,)).fetchone()
        return _to_proposal(row)

    def save_proposal(self, proposal: ProposalRecord, *, expected_version: int) -> None:
        with closing(self._connect()) as connection:
            stored = self._lock_proposal(connection=connection, proposal_id=proposal.proposal_id)
            try:
                check_writable(stored, expected_version=expected_version)
            except Exception:
                connection.rollback()
                raise
            self._update_proposal(
                connection=connection, proposal=proposal, expected_version=expected_version
            )
            connection.commit()

    def delete_proposal(self, *, proposal_id: str) -> bool:
        with closing(self._connect()) as connection:
            stored = self._lock_proposal(connection=connection, proposal_id=proposal_id)
            if stored is None:
                connection.rollback()
                return False
            if is_converted(stored):
                connection.rollback()
                raise AlreadyConvertedError("PROPOSAL_ALREADY_CONVERTED")
            connection.execute(
                "DELETE FROM proposal_records WHERE proposal_id = %s", (proposal_id,)
            )
            connection.commit()
            return True

    def list_proposals(
        self,
        *,
        query: Optional[ProposalSearchQuery],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ProposalRecord], Optional[str]]:
        where_clauses = []
        args: list[str] = []
        if query is not None and query.status is not None:
            where_clauses.append("status = %s")
            args.append(query.status)
        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        statement = f"""
            SELECT payload_json
            FROM proposal_records
            {where_sql}
            ORDER BY created_at DESC, proposal_id DESC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(statement, tuple(args)).fetchall()
        proposals = [_to_proposal(row) for row in rows]
        proposals = [proposal for proposal in proposals if proposal is not None]
        return paginate(filter_proposals(proposals, query), limit=limit, cursor=cursor)

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
            ) VALUES (%s, %s, %s, %s, %s::jsonb)
            ON CONFLICT DO NOTHING
        """
        with closing(self._connect()) as connection:
            stored = self._lock_proposal(connection=connection, proposal_id=proposal.proposal_id)
            try:
                check_writable(stored, expected_version=expected_version)
            except Exception:
                connection.rollback()
                raise
            inserted = connection.execute(
                insert_policy,
                (
                    issued_policy.policy_number,
                    issued_policy.certificate_number,
                    issued_policy.proposal_id,
                    issued_policy.issued_at.isoformat(),
                    _json_dump(issued_policy.model_dump(mode="json")),
                ),
            )
            if inserted.rowcount != 1:
                connection.rollback()
                raise ProposalStateConflictError("STATE_CONFLICT: policy number already issued")
            self._update_proposal(
                connection=connection, proposal=proposal, expected_version=expected_version
            )
            connection.commit()
        return ProposalConversionResult(proposal=proposal, issued_policy=issued_policy)

    def get_issued_policy(self, *, policy_number: str) -> Optional[IssuedPolicyRecord]:
        query = """
            SELECT payload_json
            FROM issued_policies
            WHERE policy_number = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (policy_number,)).fetchone()
        if row is None:
            return None
        return IssuedPolicyRecord.model_validate(_load_json(row["payload_json"]))

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="proposals")

    def _lock_proposal(self, *, connection, proposal_id: str) -> Optional[ProposalRecord]:
        query = """
            SELECT payload_json
            FROM proposal_records
            WHERE proposal_id = %s
            FOR UPDATE
        """
        row = connection.execute(query, (proposal_id,)).fetchone()
        return _to_proposal(row)

    def _update_proposal(
        self, *, connection, proposal: ProposalRecord, expected_version: int
    ) -> None:
        query = """
            UPDATE proposal_records SET
                status = %s,
                updated_at = %s,
                version = %s,
                payload_json = %s::jsonb
            WHERE proposal_id = %s AND version = %s
        """
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
        if cursor.rowcount != 1:
            connection.rollback()
            raise ProposalStateConflictError("STATE_CONFLICT: version mismatch")


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _json_dump(value: dict) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _load_json(value: Any) -> dict:
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)
    return dict(value)


def _to_proposal(row) -> Optional[ProposalRecord]:
    if row is None:
        return None
    return load_proposal_record(_load_json(row["payload_json"]))
