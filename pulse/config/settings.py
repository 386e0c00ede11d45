# pulse/config/settings.py
from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional

# Get project root (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

class Settings(BaseSettings):
    # OpenAI (optional - classification falls back to the keyword heuristic)
    openai_api_key: Optional[str] = None
    openai_llm_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 150
    llm_max_retries: int = 5
    llm_base_delay: float = 1.0
    llm_timeout_seconds: float = 30.0

    # SQL Server
    sql_server_host: str = "localhost"
    sql_server_port: int = 1433
    sql_server_database: str = "pulse"
    sql_server_username: str = "sa"
    sql_server_password: str = ""

    # Pipeline config
    max_workers: int = 4
    run_min_items: int = 15
    run_max_items: int = 30
    seed_items: int = 40
    schedule_interval_seconds: int = 86400

    # Dashboard
    dashboard_window: int = 50
    escalated_items_limit: int = 10
    recent_activity_limit: int = 15
    trend_days: int = 7

    log_level: str = "INFO"

    class Config:
        env_file = str(PROJECT_ROOT / ".env")
        case_sensitive = False
