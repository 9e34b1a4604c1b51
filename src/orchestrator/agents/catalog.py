"""Specialist agent catalog.

Each specialist is described declaratively: its node name, the route value the
supervisor uses to reach it, its domain prompt and the exact tools it may call.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

from orchestrator.approval import PERMISSION_SENTINEL
from orchestrator.errors import ConfigurationError


@dataclass(frozen=True)
class SpecialistSpec:
    """Declarative description of a specialist agent.

    Attributes:
        name: Graph node name (also recorded in ``specialists_invoked``).
        route_name: Value of the supervisor's ``route.next`` that selects this agent.
        description: One-line description shown to the supervisor.
        prompt: Domain system prompt.
        tool_names: Tools this agent may call.
        write_tools: Subset of ``tool_names`` that change external state. Their
            results are never cached.
    """

    name: str
    route_name: str
    description: str
    prompt: str
    tool_names: Tuple[str, ...]
    write_tools: Tuple[str, ...] = ()


OUTPUT_GUIDELINES = """OUTPUT GUIDELINES:
1. FORMAT: Answer in a SINGLE, CONCISE PARAGRAPH. Do not use bullet points, numbered lists \
or tables unless the user explicitly asks for them.
2. CONTENT: Summarize the key metrics and insights naturally in sentences.
3. NEXT STEPS: End by offering a detailed breakdown or a Google Sheet report."""

SENSITIVE_ACTIONS = f"""SENSITIVE ACTIONS:
Before any action that changes live campaigns, budgets or spreadsheets owned by the user \
(creating, deleting, pausing or editing), first reply with the exact string \
{PERMISSION_SENTINEL} and a one-sentence description of what you are about to do, together \
with the tool call. The action only runs once the user approves it."""


GOOGLE_ADS_AGENT = SpecialistSpec(
    name="google_ads_agent",
    route_name="GOOGLE_ADS_AGENT",
    description="Google Ads performance, audits and live campaign data.",
    prompt=f"""You are the Google Ads Agent, an expert in Google Ads advertising and marketing \
analytics.

CRITICAL PROTOCOL:
1. PRE-CHECK: Before performing ANY data query, call get_account_overview to fetch the \
connected data sources, unless the account id is already known from this conversation.
2. ID RESOLUTION: Identify the correct Client Customer ID from the overview. Never guess ids.
3. EXECUTION: Use the identified id for every subsequent tool call.

If a tool result is truncated, call read_evicted_result with the reference from the notice \
only when the preview is not enough to answer.

{OUTPUT_GUIDELINES}""",
    tool_names=(
        "get_unified_sources",
        "get_account_overview",
        "get_performance_data",
        "get_live_google_ads_data",
        "get_granular_analytics",
        "google_keyword_quality_score_audit",
        "google_negative_keywords_audit",
        "google_keyword_match_bid_audit",
        "google_duplicate_ad_copy_audit",
        "google_ad_group_performance",
        "google_campaign_cpa_no_leads_audit",
        "google_location_performance",
        "google_device_performance",
        "google_demographics_performance",
        "google_audience_performance",
        "google_network_performance",
        "google_time_of_day_performance",
        "google_ad_schedule_performance",
        "google_placement_performance",
    ),
)

META_ADS_AGENT = SpecialistSpec(
    name="meta_ads_agent",
    route_name="META_ADS_AGENT",
    description="Facebook and Instagram (Meta) advertising data and campaign changes.",
    prompt=f"""You are the Meta Ads Agent, an expert in Facebook and Instagram advertising.

CRITICAL PROTOCOL:
1. PRE-CHECK: Before performing ANY data query, call get_meta_account_overview to find the \
connected ad accounts, unless the account id is already known from this conversation.
2. Use only ids returned by the overview. Never guess ids.

{SENSITIVE_ACTIONS}

{OUTPUT_GUIDELINES}""",
    tool_names=(
        "get_meta_account_overview",
        "get_meta_performance_data",
        "get_live_meta_ads_data",
        "get_meta_granular_analytics",
        "get_meta_ad_preview",
        "get_meta_ad_format_performance",
        "toggle_meta_entity_status",
        "update_meta_entity_budget",
        "create_meta_campaign",
    ),
    write_tools=(
        "toggle_meta_entity_status",
        "update_meta_entity_budget",
        "create_meta_campaign",
    ),
)

SHEETS_AGENT = SpecialistSpec(
    name="sheets_agent",
    route_name="SHEETS_AGENT",
    description="Google Sheets reports: create, read, update and format spreadsheets.",
    prompt=f"""You are the Sheets Agent, an expert in Google Sheets automation and reporting.
Use your tools to create, read, update or format spreadsheets and help users organize their \
marketing data.

CRITICAL PROTOCOL:
1. If an Active Spreadsheet ID is listed below, work in that spreadsheet.
2. Only call create_google_sheet if no spreadsheet exists or the user explicitly asks for a \
new one.

{SENSITIVE_ACTIONS}

Keep replies to a short paragraph and always include the spreadsheet link or id you worked on.""",
    tool_names=(
        "create_google_sheet",
        "list_spreadsheets",
        "search_spreadsheet",
        "read_sheet_data",
        "read_spreadsheet_values",
        "append_to_sheet",
        "update_spreadsheet_values",
        "add_sheet_tab",
        "delete_spreadsheet",
        "update_spreadsheet_metadata",
        "delete_sheet_dimensions",
        "add_spreadsheet_chart",
        "format_spreadsheet",
        "set_spreadsheet_colors",
        "export_metrics_to_sheets",
    ),
    write_tools=(
        "create_google_sheet",
        "append_to_sheet",
        "update_spreadsheet_values",
        "add_sheet_tab",
        "delete_spreadsheet",
        "update_spreadsheet_metadata",
        "delete_sheet_dimensions",
        "add_spreadsheet_chart",
        "format_spreadsheet",
        "set_spreadsheet_colors",
        "export_metrics_to_sheets",
    ),
)

DEFAULT_SPECIALISTS: Tuple[SpecialistSpec, ...] = (GOOGLE_ADS_AGENT, META_ADS_AGENT, SHEETS_AGENT)

FINISH = "FINISH"


def validate_specialists(specialists: Sequence[SpecialistSpec]) -> None:
    """Reject catalogs that would produce an ambiguous graph.

    Raises:
        ConfigurationError: On an empty catalog, duplicate / reserved names or
            write tools missing from a tool list.
    """
    if not specialists:
        raise ConfigurationError("At least one specialist agent is required.")
    reserved = {"supervisor", "tools", "approval_resume", "__end__", "__start__"}
    names = [spec.name for spec in specialists]
    routes = [spec.route_name for spec in specialists]
    if len(set(names)) != len(names) or len(set(routes)) != len(routes):
        raise ConfigurationError("Specialist names and route names must be unique.")
    clashes = reserved.intersection(names)
    if clashes or FINISH in routes:
        raise ConfigurationError(f"Specialist names clash with reserved names: {sorted(clashes)}")
    for spec in specialists:
        undeclared = set(spec.write_tools) - set(spec.tool_names)
        if undeclared:
            raise ConfigurationError(
                f"Write tools of '{spec.name}' are not in its tool list: {sorted(undeclared)}"
            )
