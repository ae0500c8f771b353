import base64
import binascii
import httpx
import asyncio
import logging
from typing import Optional, Dict, Any, List
from urllib.parse import urlparse, urlunparse

from classjudge.core.config import get_settings
from classjudge.features.statuses.dictionary import from_wire
from .schemas import (
    BatchResult,
    Judge0SubmissionRequest,
    RunDetail,
    TokenAssignment,
)


class JudgeUnavailable(Exception):
    """Transport, HTTP or protocol failure while talking to Judge0."""


_BATCH_RESULT_FIELDS = "token,status_id,compile_output"
_SINGLE_RESULT_FIELDS = "status,stdout,stderr,compile_output,message"


def _decode(value: Optional[str]) -> Optional[str]:
    """Decode a base64 text field returned with ``base64_encoded=true``."""
    if value in (None, ""):
        return value
    try:
        return base64.b64decode(value).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return value


class Judge0Service:
    def __init__(self):
        self.settings = get_settings()
        # Normalise base URL: prefer configured JUDGE0_BASE_URL
        base = (self.settings.judge0_api_url or "").strip()
        if base and not base.startswith("http://") and not base.startswith("https://"):
            # assume http if scheme omitted
            base = "http://" + base
        # If no explicit port provided, default to 2358 (common Judge0 CE port)
        if base:
            parsed = urlparse(base)
            netloc = parsed.netloc
            if ':' not in netloc:
                netloc = f"{netloc}:2358"
                parsed = parsed._replace(netloc=netloc)
                base = urlunparse(parsed)
        # strip trailing slash to make joining paths predictable
        self.base_url = base.rstrip("/")
        self.headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.settings.judge0_api_key and self.settings.judge0_host:
            self.headers.update({
                "X-RapidAPI-Key": self.settings.judge0_api_key,
                "X-RapidAPI-Host": self.settings.judge0_host,
            })
        self._logger = logging.getLogger(__name__)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Perform an HTTP request against the configured Judge0 base URL.

        Connection-level failures are retried with a short backoff; anything that
        still fails is raised as ``JudgeUnavailable``.
        """
        if not self.base_url:
            raise JudgeUnavailable("Judge0 base URL is not configured (JUDGE0_BASE_URL).")
        if not path.startswith("/"):
            path = "/" + path
        url = self.base_url + path
        self._logger.debug("Judge0 request: %s %s", method, url)
        timeout = httpx.Timeout(connect=3.0, read=self.settings.judge0_timeout_s, write=5.0, pool=5.0)
        limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
        max_retries = 3
        for attempt in range(max_retries):
            try:
                async with httpx.AsyncClient(timeout=timeout, limits=limits) as client:
                    return await client.request(method, url, headers=self.headers, **kwargs)
            except (httpx.ConnectTimeout, httpx.ConnectError) as e:
                if attempt < max_retries - 1:
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue
                raise JudgeUnavailable(f"Failed to connect to Judge0 at {self.base_url}: {e}") from e
            except httpx.HTTPError as e:
                raise JudgeUnavailable(f"Judge0 request failed: {method} {path}: {e}") from e
        raise JudgeUnavailable(f"Judge0 request failed: {method} {path}")

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise JudgeUnavailable(f"Judge0 returned invalid JSON: {e} body={resp.text[:200]}") from e

    @staticmethod
    def _status_id(item: Dict[str, Any]) -> Any:
        status_id = item.get("status_id")
        if status_id is None and isinstance(item.get("status"), dict):
            status_id = item["status"].get("id")
        return status_id

    def build_batch_requests(self, submission) -> tuple[List[Dict[str, Any]], List[int]]:
        """One run request per test case of the submission's problem, ordered by test case id."""
        problem = submission.activity.problem
        language_id = submission.language_id or self.settings.judge0_language_id
        cpu_time_limit = problem.time_limit_ms / 1000 if problem.time_limit_ms else None
        reqs: List[Dict[str, Any]] = []
        test_case_ids: List[int] = []
        for case in sorted(problem.test_cases, key=lambda c: c.id):
            reqs.append(Judge0SubmissionRequest(
                source_code=submission.source_code,
                language_id=language_id,
                stdin=case.input,
                expected_output=case.expected_output,
                cpu_time_limit=cpu_time_limit,
                memory_limit=problem.memory_limit_kb,
            ).model_dump(exclude_none=True))
            test_case_ids.append(case.id)
        return reqs, test_case_ids

    # -------- Batch operations --------
    async def submit_batch(self, submission) -> List[TokenAssignment]:
        """Submit one run per test case; returns tokens paired with their test case ids."""
        reqs, test_case_ids = self.build_batch_requests(submission)
        if not reqs:
            return []
        resp = await self._request("POST", "/submissions/batch", json={"submissions": reqs})
        if resp.status_code != 201:
            raise JudgeUnavailable(f"Batch submit failed: {resp.status_code} {resp.text[:200]}")
        data = self._json(resp)
        items = data.get("submission_tokens", []) if isinstance(data, dict) else data
        tokens: List[str] = []
        for item in items or []:
            tok = item.get("token") if isinstance(item, dict) else None
            if tok:
                tokens.append(tok)
        if len(tokens) != len(test_case_ids):
            raise JudgeUnavailable(
                f"Token count mismatch in batch response: sent={len(test_case_ids)} got={len(tokens)}"
            )
        self._logger.info(
            "judge0.batch_submitted submission_id=%s runs=%d", getattr(submission, "id", None), len(tokens)
        )
        return [TokenAssignment(token=tok, test_case_id=tc_id) for tok, tc_id in zip(tokens, test_case_ids)]

    async def fetch_batch_results(self, submission) -> List[BatchResult]:
        """Current status (and decoded compile output) for every correction token of the submission."""
        tokens = [c.token for c in submission.corrections]
        if not tokens:
            return []
        query = (
            f"/submissions/batch?tokens={','.join(tokens)}"
            f"&base64_encoded=true&fields={_BATCH_RESULT_FIELDS}"
        )
        resp = await self._request("GET", query)
        if resp.status_code != 200:
            raise JudgeUnavailable(f"Batch get failed: {resp.status_code} {resp.text[:200]}")
        data = self._json(resp)
        # Judge0 batch GET returns {"submissions": [...]}; unknown tokens come back as null
        arr = data.get("submissions", []) if isinstance(data, dict) else data
        results: List[BatchResult] = []
        for item in arr or []:
            if not isinstance(item, dict) or not item.get("token"):
                continue
            results.append(BatchResult(
                token=item["token"],
                status=from_wire(self._status_id(item)),
                compile_output=_decode(item.get("compile_output")),
            ))
        return results

    async def fetch_single(self, token: str) -> RunDetail:
        """Full detail of one run, text fields decoded."""
        resp = await self._request(
            "GET",
            f"/submissions/{token}?base64_encoded=true&fields={_SINGLE_RESULT_FIELDS}",
        )
        if resp.status_code != 200:
            raise JudgeUnavailable(f"Failed to get result: {resp.status_code} body={resp.text[:200]}")
        data = self._json(resp)
        if not isinstance(data, dict):
            raise JudgeUnavailable(f"Unexpected Judge0 payload for token {token}")
        status = data.get("status") if isinstance(data.get("status"), dict) else {}
        return RunDetail(
            token=token,
            status=from_wire(self._status_id(data)),
            status_description=status.get("description"),
            stdout=_decode(data.get("stdout")),
            stderr=_decode(data.get("stderr")),
            compile_output=_decode(data.get("compile_output")),
            message=_decode(data.get("message")),
        )


judge0_service = Judge0Service()
