"""
Basic HTTP/2 fetch example using h2_fetch.

This example demonstrates GET and POST requests over a shared
HTTP/2 session, cancelling a slow request and shutting down.
"""

import asyncio
import logging

from h2_fetch import AbortController, AbortError, FetchError, disconnect_all, fetch

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def simple_get_request():
    """Demonstrate a simple GET request."""
    logger.info("Making simple GET request...")

    response = await fetch("https://httpbin.org/get?test=value")
    logger.info(f"Response status: {response.status} (ok={response.ok})")

    data = await response.json()
    logger.info(f"Echoed args: {data['args']}")


async def post_request_with_body():
    """Demonstrate a POST request with body."""
    logger.info("Making POST request with body...")

    response = await fetch(
        "https://httpbin.org/post",
        method="POST",
        body='{"message": "Hello from h2_fetch"}',
        headers={"content-type": "application/json"},
    )
    data = await response.json()
    logger.info(f"Server received: {data['data']}")


async def concurrent_requests():
    """Demonstrate several requests multiplexed over one session."""
    logger.info("Making concurrent requests...")

    responses = await asyncio.gather(*(
        fetch(f"https://httpbin.org/get?n={i}") for i in range(5)
    ))
    logger.info(f"Statuses: {[response.status for response in responses]}")


async def aborted_request():
    """Demonstrate cancelling a slow request."""
    logger.info("Making a request and aborting it...")

    controller = AbortController()
    asyncio.get_running_loop().call_later(0.5, controller.abort)

    try:
        await fetch("https://httpbin.org/delay/5", signal=controller.signal)
    except AbortError as e:
        logger.info(f"Request cancelled: {e}")


async def main():
    """Run all examples."""
    try:
        await simple_get_request()
        await post_request_with_body()
        await concurrent_requests()
        await aborted_request()
    except FetchError as e:
        logger.error(f"{e.name}: {e}")
    finally:
        await disconnect_all()


if __name__ == "__main__":
    asyncio.run(main())
