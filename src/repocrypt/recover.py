"""Recover the repository key from a running cluster."""

import base64
import json
from typing import Dict

from repocrypt import ClusterSecretMalformed, ClusterSecretMissing, output
from repocrypt.keys import KeyRecord, KeyStore
from repocrypt.utils import CmdExecutionError, cmd

SECRET_NAMESPACE = "console"
SECRET_NAME = "console-conf"
SECRET_FIELD = "key"


class Kubectl(object):
    """Read secrets through the `kubectl` of the current kube context."""

    binary = "kubectl"

    def __init__(self, context=None):
        self.context = context

    def _args(self, *args):
        result = [self.binary]
        if self.context:
            result.extend(["--context", self.context])
        result.extend(args)
        return result

    def secret(self, namespace: str, name: str) -> Dict[str, bytes]:
        try:
            stdout, _ = cmd(
                self._args(
                    "get",
                    "secret",
                    name,
                    "--namespace",
                    namespace,
                    "--output",
                    "json",
                )
            )
        except CmdExecutionError as e:
            if "NotFound" in e.stderr:
                raise ClusterSecretMissing.from_context(namespace, name)
            raise
        try:
            secret = json.loads(stdout)
            return {
                key: base64.b64decode(value, validate=True)
                for key, value in (secret.get("data") or {}).items()
            }
        except (ValueError, TypeError, AttributeError) as e:
            raise ClusterSecretMalformed.from_context(
                namespace, name, "unexpected kubectl output: {}".format(e)
            )


def recover(cluster, key_store: KeyStore) -> KeyRecord:
    """Overwrite the local key with the one stored in the cluster."""
    data = cluster.secret(SECRET_NAMESPACE, SECRET_NAME)
    if SECRET_FIELD not in data:
        raise ClusterSecretMissing.from_context(
            SECRET_NAMESPACE, SECRET_NAME, SECRET_FIELD
        )
    record = KeyRecord.parse(data[SECRET_FIELD])
    key_store.flush(record)
    output.annotate(
        "Stored key from {}/{} in {}".format(
            SECRET_NAMESPACE, SECRET_NAME, key_store.path
        ),
        debug=True,
    )
    return record
