"""
Instance Metadata Client Module

Thin wrapper around a requests session for talking to the EC2 instance metadata
service (IMDS).

Behaviour:
    - Every request uses a fixed 1 second timeout
    - No retries: a transient failure is reported for the current scrape only
    - A 404 is returned as a normal response (feature not available on this
      instance), transport failures raise requests.RequestException
    - IMDSv2 session tokens are negotiated with a PUT carrying the TTL header
      and sent on every later request through the X-aws-ec2-metadata-token header
    - Tokens are never cached, a new one is negotiated for every scrape
"""
import logging
from typing import NamedTuple, Optional

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 1
METADATA_TOKEN_HEADER = 'X-aws-ec2-metadata-token'
METADATA_TOKEN_TTL_HEADER = 'X-aws-ec2-metadata-token-ttl-seconds'
METADATA_TOKEN_TTL_SECONDS = 21600


class MetadataResponse(NamedTuple):
    status_code: int
    body: str

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class MetadataClient:
    def __init__(self, metadata_endpoint: str, token_endpoint: str,
                 session: Optional[requests.Session] = None,
                 timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.metadata_endpoint = metadata_endpoint
        self.token_endpoint = token_endpoint
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def negotiate_token(self) -> str:
        """
        Request an IMDSv2 session token.

        Returns:
            The token as returned by the token endpoint

        Raises:
            requests.RequestException: On connection failures and timeouts
        """
        logger.debug(f"Requesting IMDSv2 token from {self.token_endpoint}")
        response = self.session.put(
            self.token_endpoint,
            headers={METADATA_TOKEN_TTL_HEADER: str(METADATA_TOKEN_TTL_SECONDS)},
            timeout=self.timeout,
        )
        return response.text

    def fetch(self, path: str, token: Optional[str] = None) -> MetadataResponse:
        """
        GET a metadata path relative to the metadata endpoint.

        Args:
            path: Relative metadata path, e.g. 'spot/instance-action'
            token: IMDSv2 session token, omitted from the request when empty

        Returns:
            MetadataResponse with the status code and body text

        Raises:
            requests.RequestException: On connection failures and timeouts
        """
        headers = {}
        if token:
            headers[METADATA_TOKEN_HEADER] = token
        url = self.metadata_endpoint + path
        response = self.session.get(url, headers=headers, timeout=self.timeout)
        logger.debug(f"GET {url} returned {response.status_code}")
        return MetadataResponse(response.status_code, response.text)
