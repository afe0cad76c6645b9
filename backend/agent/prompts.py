"""System directive for the financial assistant."""

SYSTEM_PROMPT_TEMPLATE = """You are a helpful financial assistant.
Use the available financial functions to help users with stock prices, market analysis, and financial calculations.
Always call the appropriate functions when users ask for specific financial data.

## Available functions
{tool_list}

## Rules
1. Never invent prices, ratios or exchange rates. Use the functions.
2. If a function returns an error, explain it briefly and suggest a supported alternative.
3. Present money with two decimal places and the currency code.
4. Keep answers concise."""

WELCOME_MESSAGE = (
    "Welcome to Financial ChatBot! Ask me about stocks, market data, or financial calculations."
)

NO_RESPONSE_TEXT = "No response generated."


def build_system_prompt(tool_names: list[str]) -> str:
    """Build the system directive listing the registered tool names.

    Args:
        tool_names: Names from the tool registry, in registration order.

    Returns:
        Formatted system prompt string.
    """
    tool_list = "\n".join(f"- {name}" for name in tool_names) or "- none"
    return SYSTEM_PROMPT_TEMPLATE.format(tool_list=tool_list)
