"""Draining paginated AWS list APIs."""

from typing import Any, Callable, Iterable, Iterator, Optional, Tuple, TypeVar

from botocore.exceptions import ClientError

from gyro_aws.utils.errors import is_not_found_error
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

PageFetcher = Callable[[Optional[str]], Tuple[Iterable[T], Optional[str]]]


def paginate(
    fetch_page: PageFetcher,
    predicate: Optional[Callable[[T], bool]] = None
) -> Iterator[T]:
    """Yield every item of a paginated list call.

    ``fetch_page`` is called with ``None`` for the first page and with the
    previous page's continuation token afterwards, until it returns no token.
    A not-found error from the remote call ends the sequence instead of
    propagating.

    Args:
        fetch_page: Callable taking a continuation token and returning
            ``(items, next_token)``
        predicate: Only yield items for which this returns True

    Yields:
        Items from all pages, in page order
    """
    token = None

    while True:
        try:
            items, token = fetch_page(token)
        except ClientError as e:
            if is_not_found_error(e):
                logger.debug(f"List call reported not found, treating as empty: {e}")
                return
            raise

        for item in items:
            if predicate is None or predicate(item):
                yield item

        if not token:
            return


def boto_pages(
    method: Callable[..., dict],
    items_key: str,
    token_key: str = 'NextToken',
    request_token_key: Optional[str] = None,
    **params: Any
) -> PageFetcher:
    """Adapt a boto3 list method into a page fetcher for ``paginate``.

    Example:
        secrets = paginate(boto_pages(client.list_secrets, 'SecretList'))
        functions = paginate(boto_pages(
            client.list_functions, 'Functions', 'NextMarker', 'Marker'))

    Args:
        method: Bound boto3 client method
        items_key: Response key holding the page of items
        token_key: Response key holding the next token
        request_token_key: Request parameter receiving the token (defaults
            to ``token_key``)
        **params: Extra request parameters sent with every page

    Returns:
        Callable suitable for ``paginate``
    """
    request_token_key = request_token_key or token_key

    def fetch_page(token: Optional[str]):
        request = dict(params)
        if token:
            request[request_token_key] = token

        response = method(**request)
        return response.get(items_key, []), response.get(token_key)

    return fetch_page
