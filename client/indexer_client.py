"""HTTP client for the node-selecting indexer service."""

import asyncio
import uuid
from typing import List, Optional

import httpx

from client.config import TransferConfig
from common.exceptions import TransportFailureError
from common.logging_config import get_logger
from common.types import NodeDescriptor, NodeSelection, SelectionMode, TrustFilter, TrustTier

logger = get_logger(__name__)


class IndexerClient:
    """
    Node selector backed by the indexer HTTP API.

    Results are authoritative and are never cached between calls.
    """

    def __init__(self, config: TransferConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize indexer client.

        Args:
            config: Transfer configuration (indexer URL, timeouts, retry budget)
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.config = config
        headers = {}
        if config.api_token:
            headers['Authorization'] = f'Bearer {config.api_token}'
        self.session = httpx.AsyncClient(
            base_url=config.indexer_url,
            timeout=config.request_timeout,
            headers=headers,
            transport=transport,
        )
        logger.info(f"Initialized IndexerClient [base_url={config.indexer_url}]")

    async def _request_with_retry(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """
        Make HTTP request with retry logic on 5xx errors and network failures.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            HTTP response object (2xx or 4xx)

        Raises:
            TransportFailureError: If the retry budget is exhausted
        """
        max_retries = self.config.max_retries
        backoff = self.config.retry_backoff_multiplier
        request_id = str(uuid.uuid4())
        headers = kwargs.pop('headers', {})
        headers['X-Request-ID'] = request_id

        last_error = None

        for attempt in range(max_retries + 1):
            try:
                response = await self.session.request(method, endpoint, headers=headers, **kwargs)
                logger.debug(
                    f"Indexer response: {method} {endpoint} status={response.status_code} [request_id={request_id}]"
                )

                if response.status_code < 500:
                    return response

                last_error = f"status {response.status_code}"
            except (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError) as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < max_retries:
                delay = backoff ** attempt
                logger.warning(
                    f"Indexer request failed (attempt {attempt + 1}/{max_retries + 1}): "
                    f"{method} {endpoint} error={last_error}, retrying in {delay}s [request_id={request_id}]"
                )
                await asyncio.sleep(delay)

        logger.error(f"Indexer unreachable after {max_retries + 1} attempts: {method} {endpoint} error={last_error}")
        raise TransportFailureError(
            f"Indexer request {method} {endpoint} failed: {last_error}",
            node_errors={self.config.indexer_url: last_error},
        )

    async def select_nodes(
        self,
        replica_count: int,
        trust_filter: TrustFilter,
        mode: SelectionMode,
    ) -> NodeSelection:
        """
        Ask the indexer for storage nodes.

        Args:
            replica_count: Replicas the caller needs
            trust_filter: Trust tiers the caller will accept
            mode: Requested ordering (min-latency or round-robin)

        Returns:
            NodeSelection with trusted and discovered nodes, in ranked order

        Raises:
            TransportFailureError: If the indexer cannot be reached or rejects the request
        """
        response = await self._request_with_retry(
            'GET',
            '/nodes',
            params={
                'replicas': replica_count,
                'trust': trust_filter.value,
                'mode': mode.value,
            },
        )
        if response.status_code != 200:
            raise TransportFailureError(f"Indexer rejected node selection: {_error_detail(response)}")

        data = response.json()
        selection = NodeSelection(
            trusted=tuple(NodeDescriptor.from_dict(n, TrustTier.TRUSTED) for n in data.get('trusted', [])),
            discovered=tuple(NodeDescriptor.from_dict(n, TrustTier.DISCOVERED) for n in data.get('discovered', [])),
        )
        logger.debug(
            f"Indexer selected {len(selection.trusted)} trusted, {len(selection.discovered)} discovered node(s)"
        )
        return selection

    async def locate(self, root: str) -> List[NodeDescriptor]:
        """
        Find nodes that serve a root.

        Args:
            root: Root identifier

        Returns:
            Ordered list of nodes; empty if the indexer knows of none
        """
        response = await self._request_with_retry('GET', f'/locations/{root}')
        if response.status_code == 404:
            return []
        if response.status_code != 200:
            raise TransportFailureError(f"Indexer rejected lookup: {_error_detail(response)}", root=root)
        return [NodeDescriptor.from_dict(n) for n in response.json().get('nodes', [])]

    async def close(self) -> None:
        """Close the HTTP session."""
        await self.session.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
        return f"{data.get('detail', 'Unknown error')} (Code: {data.get('code', 'UNKNOWN')})"
    except ValueError:
        return response.text or f"status {response.status_code}"
