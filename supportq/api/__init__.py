"""HTTP API for SupportQ"""


def main() -> None:
    """Run the API with uvicorn (console script: supportq-api)."""
    import uvicorn

    from supportq.infrastructure.settings import API_HOST, API_PORT, DEBUG

    uvicorn.run("supportq.api.app:app", host=API_HOST, port=API_PORT, reload=DEBUG)
