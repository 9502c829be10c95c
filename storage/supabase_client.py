"""
Supabase storage client for pull request state.

Tables (see setup/setup_database.py):
- repositories: one row per GitHub repository
- pull_requests: one row per (repo_id, pr_number), never deleted
- teams: alert destinations, managed outside this service

Per-key atomicity comes from Postgres: upserts use ON CONFLICT, updates are
single UPDATE ... WHERE statements and counters go through the
increment_pull_request_counter SQL function.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional
from supabase import Client, create_client

from models.data_models import (
    PullRequest,
    PullRequestFilter,
    PullRequestKey,
    Repository,
    Team,
)
from storage.base import PullRequestStore, serialize_fields
from utils.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class SupabaseStore(PullRequestStore):
    """State store backed by Supabase (PostgREST)."""

    backend_name = "supabase"

    def __init__(self, supabase_url: str, supabase_key: str, batch_size: int = 500):
        """
        Initialize Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key (service role key for writes)
            batch_size: Rows fetched per page by find_many (default 500)
        """
        self.client: Client = create_client(supabase_url, supabase_key)
        self.table_name = "pull_requests"
        self.repositories_table = "repositories"
        self.teams_table = "teams"
        self.batch_size = batch_size
        logger.info(f"Initialized SupabaseStore for {supabase_url}")

    # ------------------------------------------------------------------
    # Repositories and teams
    # ------------------------------------------------------------------

    def upsert_repository(self, repository: Repository) -> Repository:
        """
        Insert or update a repository row keyed by its GitHub id.

        Optional fields that the event did not carry are left untouched.
        """
        record = repository.model_dump(exclude_none=True)
        try:
            result = self.client.table(self.repositories_table).upsert(
                record,
                on_conflict="id"
            ).execute()
        except Exception as e:
            logger.error(f"Failed to upsert repository {repository.id}: {e}")
            raise StoreUnavailableError(f"Failed to upsert repository {repository.id}") from e

        logger.debug(f"Upserted repository {repository.id} ({repository.name})")
        return Repository.model_validate(result.data[0]) if result.data else repository

    def find_repository(self, repo_id: int) -> Optional[Repository]:
        try:
            result = self.client.table(self.repositories_table).select("*").eq(
                "id", repo_id
            ).limit(1).execute()
        except Exception as e:
            logger.error(f"Failed to get repository {repo_id}: {e}")
            raise StoreUnavailableError(f"Failed to get repository {repo_id}") from e

        return Repository.model_validate(result.data[0]) if result.data else None

    def list_repositories(self, owner_id: Optional[int] = None) -> List[Repository]:
        try:
            query = self.client.table(self.repositories_table).select("*")
            if owner_id is not None:
                query = query.eq("owner_id", owner_id)
            result = query.execute()
        except Exception as e:
            logger.error(f"Failed to list repositories (owner_id={owner_id}): {e}")
            raise StoreUnavailableError("Failed to list repositories") from e

        return [Repository.model_validate(row) for row in result.data]

    def list_teams(self) -> List[Team]:
        try:
            result = self.client.table(self.teams_table).select("*").order("id").execute()
        except Exception as e:
            logger.error(f"Failed to list teams: {e}")
            raise StoreUnavailableError("Failed to list teams") from e

        return [self._team(row) for row in result.data]

    def _team(self, row: Dict[str, Any]) -> Team:
        row = dict(row)
        row["configs"] = row.get("configs") or {}
        return Team.model_validate(row)

    def update_team(self, team_id: int, patch: Dict[str, Any]) -> Optional[Team]:
        """
        Apply a patch to one team row.

        Returns:
            The updated Team, or None when no team has that id
        """
        try:
            result = self.client.table(self.teams_table).update(
                serialize_fields(patch)
            ).eq("id", team_id).execute()
        except Exception as e:
            logger.error(f"Failed to update team {team_id}: {e}")
            raise StoreUnavailableError(f"Failed to update team {team_id}") from e

        return self._team(result.data[0]) if result.data else None

    def update_org_teams(self, github_org_id: int, patch: Dict[str, Any]) -> List[Team]:
        """Apply a patch to every team linked to a GitHub org in one UPDATE."""
        try:
            result = self.client.table(self.teams_table).update(
                serialize_fields(patch)
            ).eq("github_org_id", github_org_id).execute()
        except Exception as e:
            logger.error(f"Failed to update teams for org {github_org_id}: {e}")
            raise StoreUnavailableError(f"Failed to update teams for org {github_org_id}") from e

        return [self._team(row) for row in result.data]

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    def _by_key(self, query, key: PullRequestKey):
        return query.eq("repo_id", key.repo_id).eq("pr_number", key.pr_number)

    def find_by_key(self, key: PullRequestKey) -> Optional[PullRequest]:
        """
        Get a single PR by its composite key.

        Returns:
            PullRequest or None if not found
        """
        key = PullRequestKey(*key)
        try:
            result = self._by_key(
                self.client.table(self.table_name).select("*"), key
            ).limit(1).execute()
        except Exception as e:
            logger.error(f"Failed to get PR {key.repo_id}#{key.pr_number}: {e}")
            raise StoreUnavailableError(f"Failed to get PR {key.repo_id}#{key.pr_number}") from e

        return PullRequest.model_validate(result.data[0]) if result.data else None

    def upsert(
        self,
        key: PullRequestKey,
        create_fields: Dict[str, Any],
        update_fields: Dict[str, Any],
    ) -> PullRequest:
        """
        Insert the PR if absent, then apply update fields.

        Runs as two single-statement steps:
        1. INSERT ... ON CONFLICT (repo_id, pr_number) DO NOTHING with create + update fields
        2. UPDATE ... WHERE repo_id = ? AND pr_number = ? with update fields

        Each step is atomic in Postgres, so concurrent deliveries for the same
        key converge on the same row. Replaying the same call is a no-op.

        Returns:
            The stored PullRequest after the update

        Raises:
            StoreUnavailableError if either statement fails
        """
        key = PullRequestKey(*key)
        update_record = serialize_fields(update_fields)
        insert_record = {
            **serialize_fields(create_fields),
            **update_record,
            "repo_id": key.repo_id,
            "pr_number": key.pr_number,
        }

        try:
            self.client.table(self.table_name).upsert(
                insert_record,
                on_conflict="repo_id,pr_number",
                ignore_duplicates=True
            ).execute()

            result = self._by_key(
                self.client.table(self.table_name).update(update_record), key
            ).execute()
        except Exception as e:
            logger.error(f"Failed to upsert PR {key.repo_id}#{key.pr_number}: {e}")
            raise StoreUnavailableError(f"Failed to upsert PR {key.repo_id}#{key.pr_number}") from e

        logger.debug(f"Upserted PR {key.repo_id}#{key.pr_number}")
        if result.data:
            return PullRequest.model_validate(result.data[0])
        return self.find_by_key(key)

    def update_where(
        self,
        key: PullRequestKey,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[PullRequest]:
        """
        Apply a patch to an existing PR row.

        `expected` fields become extra WHERE conditions, so a row that changed
        in the meantime is left untouched.

        Returns:
            The updated PullRequest, or None when no row matched
        """
        key = PullRequestKey(*key)
        try:
            query = self._by_key(
                self.client.table(self.table_name).update(serialize_fields(patch)), key
            )
            for name, value in serialize_fields(expected or {}).items():
                if value is None:
                    query = query.is_(name, "null")
                else:
                    query = query.eq(name, value)
            result = query.execute()
        except Exception as e:
            logger.error(f"Failed to update PR {key.repo_id}#{key.pr_number}: {e}")
            raise StoreUnavailableError(f"Failed to update PR {key.repo_id}#{key.pr_number}") from e

        if not result.data:
            logger.debug(f"No PR row for {key.repo_id}#{key.pr_number}; update skipped")
            return None
        return PullRequest.model_validate(result.data[0])

    def _apply_filter(self, query, flt: PullRequestFilter):
        """Translate a PullRequestFilter into PostgREST query filters."""
        if flt.status is not None:
            query = query.eq("status", flt.status.value)
        if flt.repo_ids is not None:
            query = query.in_("repo_id", flt.repo_ids)
        if flt.reviewed is False:
            query = query.eq("review_count", 0)
        elif flt.reviewed is True:
            query = query.gt("review_count", 0)
        if flt.opened_before is not None:
            query = query.lte("opened_at", flt.opened_before.isoformat())
        if flt.last_commit_before is not None:
            query = query.lte("last_commit_at", flt.last_commit_before.isoformat())
        if flt.last_review_before is not None:
            query = query.lte("last_review_at", flt.last_review_before.isoformat())
        if flt.unalerted is not None:
            query = query.is_(flt.unalerted.marker_field, "null")
        return query

    def find_many(
        self,
        query: PullRequestFilter,
        order_by: str = "opened_at",
        descending: bool = False,
    ) -> Iterator[PullRequest]:
        """
        Lazily yield PRs matching the filter, one page at a time.

        Supabase caps responses (default 1000 rows), so rows are fetched in
        pages of `batch_size`; a page is only requested once the caller has
        consumed the previous one.
        """
        if query.repo_ids is not None and not query.repo_ids:
            return

        offset = 0
        while True:
            try:
                builder = self._apply_filter(
                    self.client.table(self.table_name).select("*"), query
                )
                # Tie-break on the key so pages are stable
                builder = builder.order(order_by, desc=descending).order("repo_id").order("pr_number")
                result = builder.range(offset, offset + self.batch_size - 1).execute()
            except Exception as e:
                logger.error(f"Failed to query pull requests: {e}")
                raise StoreUnavailableError("Failed to query pull requests") from e

            batch = result.data
            for row in batch:
                yield PullRequest.model_validate(row)

            if len(batch) < self.batch_size:
                break
            offset += len(batch)

    def increment_counter(
        self,
        key: PullRequestKey,
        field: str,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Optional[PullRequest]:
        """
        Atomically increment a counter column via the SQL function.

        Returns:
            The updated PullRequest, or None when no row matched the key
        """
        key = PullRequestKey(*key)
        params = {
            "p_repo_id": key.repo_id,
            "p_pr_number": key.pr_number,
            "p_field": field,
            "p_patch": serialize_fields(patch or {}),
        }
        try:
            result = self.client.rpc("increment_pull_request_counter", params).execute()
        except Exception as e:
            logger.error(f"Failed to increment {field} for PR {key.repo_id}#{key.pr_number}: {e}")
            raise StoreUnavailableError(
                f"Failed to increment {field} for PR {key.repo_id}#{key.pr_number}"
            ) from e

        if not result.data:
            return None
        return PullRequest.model_validate(result.data[0])
