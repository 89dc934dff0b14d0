"""
Source templates for generated artifacts.

Templates use ``{{SLOT}}`` placeholders. Slots are filled in a single pass,
so text inserted into one slot is never re-expanded.
"""

import re

_SLOT = re.compile(r"\{\{([A-Z_]+)\}\}")


def render_template(template: str, slots: dict[str, str]) -> str:
    """
    Fill every ``{{SLOT}}`` placeholder in a template.

    Raises:
        ValueError: If the template references a slot that was not provided
    """
    missing = sorted({name for name in _SLOT.findall(template) if name not in slots})
    if missing:
        raise ValueError(f"Missing required template slots: {missing}")
    return _SLOT.sub(lambda m: slots[m.group(1)], template)


MODULE_TEMPLATE = '''"""Foundry generated {{KIND}}."""

ARTIFACT_ID = {{ID}}
ARTIFACT_NAME = {{NAME}}
DESCRIPTION = {{DESCRIPTION}}
{{HANDLERS}}

def register(api):
{{REGISTRATIONS}}
'''

TOOL_HANDLER_TEMPLATE = '''

def {{FUNC}}(params, context=None):
{{BODY}}
'''

HOOK_HANDLER_TEMPLATE = '''

def {{FUNC}}(event, context=None):
{{BODY}}
'''

TOOL_REGISTRATION_TEMPLATE = """    api.register_tool(
        name={{NAME}},
        label={{LABEL}},
        description={{DESCRIPTION}},
        parameters={{PARAMETERS}},
        handler={{FUNC}},
    )
"""

HOOK_REGISTRATION_TEMPLATE = """    api.on({{EVENT}}, {{FUNC}})
"""

SKILL_TEMPLATE = '''"""Foundry generated API skill."""

import json
import urllib.parse
import urllib.request

ARTIFACT_ID = {{ID}}
ARTIFACT_NAME = {{NAME}}
DESCRIPTION = {{DESCRIPTION}}
BASE_URL = {{BASE_URL}}


class {{CLASS}}:
    """HTTP client for the {{CLASS}} endpoints."""

    def __init__(self, base_url=BASE_URL, headers=None, timeout=30):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.timeout = timeout

    def request(self, method, path, params=None, body=None):
        url = self.base_url + path
        if params:
            url += "?" + urllib.parse.urlencode(params)
        headers = dict(self.headers)
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        with urllib.request.urlopen(request, timeout=self.timeout) as response:
            payload = response.read().decode("utf-8")
        return json.loads(payload) if payload else None
{{METHODS}}

def register(api):
    client = {{CLASS}}()
{{REGISTRATIONS}}
'''

SKILL_METHOD_TEMPLATE = '''
    def {{METHOD}}(self{{ARGS}}, params=None, body=None):
        return self.request({{HTTP_METHOD}}, {{PATH_EXPR}}, params=params, body=body)
'''

SKILL_HANDLER_TEMPLATE = '''
    def {{FUNC}}(params, context=None):
        params = params or {}
        return client.{{METHOD}}({{CALL_ARGS}}params=params.get("query"), body=params.get("body"))

'''

SKILL_DOC_TEMPLATE = """# {{NAME}}

{{DESCRIPTION}}

Base URL: `{{BASE_URL}}`

## Endpoints

{{ENDPOINTS}}

## Usage

Each endpoint is exposed as a tool. Path parameters are passed by name;
`query` and `body` carry the query string and JSON body.
"""
