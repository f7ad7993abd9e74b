from datetime import datetime
import re


def _pascalcase_to_snake_case(name: str) -> str:
    """Simple function to turn PascalCase to snake_case.
        Borrowed from https://stackoverflow.com/a/1176023
    """
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()

def _timestamp() -> str:
    """Current local time formatted for created/updated columns."""
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')
