"""Client for the identity registry's GraphQL API."""

from typing import Dict, List, NamedTuple, Optional

import requests

from repocrypt import APIError, output

TIMEOUT = 30

CREATE_KEY = """
mutation CreateKey($name: String!, $content: String!) {
  createPublicKey(attributes: {name: $name, content: $content}) {
    id
  }
}
"""

LIST_KEYS = """
query ListKeys($emails: [String]) {
  publicKeys(emails: $emails, first: 1000) {
    edges {
      node {
        id
        content
        user { email }
      }
    }
  }
}
"""


class PublicKey(NamedTuple):
    email: str
    content: str


class Client(object):
    def __init__(self, endpoint: Optional[str], token: Optional[str]):
        if not endpoint:
            raise APIError.from_context(
                "<unset>",
                "No API endpoint configured. Set REPOCRYPT_API_ENDPOINT or "
                "`endpoint` in the [api] section of the config file.",
            )
        self.endpoint = endpoint
        self.token = token
        self.session = requests.Session()

    @classmethod
    def from_config(cls, config):
        return cls(config.api_endpoint, config.api_token)

    def _query(self, query: str, variables: Dict) -> Dict:
        headers = {}
        if self.token:
            headers["Authorization"] = "Bearer {}".format(self.token)
        output.annotate("POST {}".format(self.endpoint), debug=True)
        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                headers=headers,
                timeout=TIMEOUT,
            )
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            raise APIError.from_context(self.endpoint, str(e))
        except ValueError as e:
            raise APIError.from_context(
                self.endpoint, "invalid JSON response: {}".format(e)
            )
        if result.get("errors"):
            raise APIError.from_context(
                self.endpoint,
                "\n".join(
                    error.get("message", str(error))
                    for error in result["errors"]
                ),
            )
        return result.get("data") or {}

    def create_key(self, name: str, content: str):
        self._query(CREATE_KEY, {"name": name, "content": content})

    def list_keys(self, emails: List[str]) -> List[PublicKey]:
        data = self._query(LIST_KEYS, {"emails": list(emails)})
        edges = (data.get("publicKeys") or {}).get("edges") or []
        return [
            PublicKey(
                email=edge["node"]["user"]["email"],
                content=edge["node"]["content"],
            )
            for edge in edges
        ]
