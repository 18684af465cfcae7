class AppState:
    """Process-wide CLI flags, set once by the CLI callback before any command runs."""

    def __init__(self):
        self.verbose_mode: bool = False
        self.log_level: str = "INFO"


APP_STATE = AppState()
