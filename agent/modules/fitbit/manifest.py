"""Fitbit module manifest: tool definitions."""

from shared.schemas.tools import ModuleManifest, ToolDefinition, ToolParameter

MANIFEST = ModuleManifest(
    module_name="fitbit",
    description=(
        "Retrieve weight, sleep, exercise, and profile data from Fitbit, and "
        "manage the module's Fitbit authorization."
    ),
    tools=[
        ToolDefinition(
            name="fitbit.get_weight",
            description=(
                "Get the raw JSON response for weight log entries from Fitbit "
                "over the last 7, 30, or 90 days."
            ),
            parameters=[
                ToolParameter(
                    name="days",
                    type="string",
                    description="Number of past days to cover (default: 30)",
                    required=False,
                    enum=["7", "30", "90"],
                ),
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="fitbit.get_sleep_by_date_range",
            description=(
                "Get the raw JSON response for sleep logs from Fitbit for a date "
                "range. Returns each sleep session with stages, efficiency, and "
                "time asleep. The range may span at most 100 days."
            ),
            parameters=[
                ToolParameter(
                    name="start_date",
                    type="string",
                    description="Start date in YYYY-MM-DD format",
                ),
                ToolParameter(
                    name="end_date",
                    type="string",
                    description="End date in YYYY-MM-DD format",
                ),
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="fitbit.get_exercises",
            description=(
                "Get the raw JSON response for exercise and activity logs from "
                "Fitbit recorded after a specific date, oldest first."
            ),
            parameters=[
                ToolParameter(
                    name="after_date",
                    type="string",
                    description="Return activities after this date (YYYY-MM-DD)",
                ),
                ToolParameter(
                    name="limit",
                    type="integer",
                    description="Maximum number of activities to return (1-100, default: 20)",
                    required=False,
                ),
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="fitbit.get_profile",
            description="Get the raw JSON response for the user's Fitbit profile.",
            parameters=[],
            required_permission="user",
        ),
        ToolDefinition(
            name="fitbit.get_auth_status",
            description=(
                "Report whether the module holds a Fitbit token, when it "
                "expires, and the state of any pending authorization flow."
            ),
            parameters=[],
            required_permission="user",
        ),
        ToolDefinition(
            name="fitbit.start_authorization",
            description=(
                "Start the local Fitbit authorization flow. Use this when Fitbit "
                "tools report the module is unauthorized or the token expired. "
                "Returns the URL the user must open in a browser."
            ),
            parameters=[],
            required_permission="user",
        ),
        ToolDefinition(
            name="fitbit.revoke_authorization",
            description=(
                "Delete the module's stored Fitbit tokens. Fitbit tools will "
                "fail until authorization is completed again."
            ),
            parameters=[],
            required_permission="admin",
        ),
    ],
)
