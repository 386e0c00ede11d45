"""Shared pytest configuration."""


def pytest_addoption(parser):
    parser.addoption(
        "--openai-api-key",
        action="store",
        default=None,
        help="OpenAI API key for the live chat model tests",
    )
