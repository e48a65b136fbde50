from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    app_env: str = "dev"
    database_url: str

    admin_api_key: str | None = (
        None  # Optional - if not set, admin endpoints are unprotected (dev mode)
    )
    webhook_secret: str | None = None  # HMAC-SHA256 key for X-Webhook-Signature (unchecked if unset)

    # Direct-message delivery (platform messaging API)
    messaging_api_base_url: str = "https://api.whop.com/api/v5"
    messaging_api_key: str | None = None
    messaging_dry_run: bool = True  # Set to False in production to enable real sending

    # Affiliate attribution
    affiliate_app_id: str = "app_funnel_bot"  # Appended as ?app=<id> to untagged resource links
    fallback_install_url: str = "https://whop.com/apps/"  # Used when a resource can't be found
    link_placeholder: str = "[LINK]"

    # Funnel behaviour
    trigger_stage_names: str = "OFFER"  # Comma-separated stage names that fire the one-time DM
    offer_dm_delay_seconds: int = 30  # Minimum time in OFFER before the sweep sends the DM
    side_effect_timeout_seconds: float = 15.0  # Upper bound on the one-time action
    inactivity_threshold_days: int = 2  # Reaper closes conversations idle this long

    # Rate limiting (webhooks + admin)
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 120  # Requests allowed per window per client
    rate_limit_window_seconds: int = 60

    # Feature flags
    feature_reprompts_enabled: bool = True
    feature_offer_dm_enabled: bool = True

    def trigger_stages(self) -> tuple[str, ...]:
        """Parsed trigger_stage_names (upper-cased, blanks dropped)."""
        return tuple(
            name.strip().upper() for name in self.trigger_stage_names.split(",") if name.strip()
        )


# Settings will load from environment variables or .env file
# Required fields will raise ValidationError if missing (fail-fast)
settings = Settings()
