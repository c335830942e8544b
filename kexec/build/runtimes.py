from dataclasses import dataclass
from typing import Dict

from ..core.errors import EmptyInput, UnsupportedRuntime

EXECUTION_FILE = "exec"
DOCKERFILE = "Dockerfile"
DOCKERIGNORE = ".dockerignore"


@dataclass(frozen=True)
class RuntimeTemplate:
    """A base image plus the bootstrap that wraps user code into the entrypoint."""
    name: str
    dockerfile: str

    def render_entrypoint(self, code: str, function_name: str, params_env: str) -> str:
        # Works on both Python 2.7 and 3 images
        return (
            "import json\n"
            "import os\n"
            "\n"
            f"{code}\n"
            "\n"
            f"params = os.environ.get(\"{params_env}\") or \"{{}}\"\n"
            f"{function_name}(json.loads(params))\n"
        )


PYTHON27 = RuntimeTemplate(
    name="python27",
    dockerfile=(
        "FROM python:2.7\n"
        "ADD . ./\n"
        f"ENTRYPOINT [ \"python\", \"{EXECUTION_FILE}\" ]\n"
    ),
)

PYTHON3 = RuntimeTemplate(
    name="python3",
    dockerfile=(
        "FROM python:3.9-slim\n"
        "ENV PYTHONUNBUFFERED=1\n"
        "WORKDIR /app\n"
        "ADD . ./\n"
        f"ENTRYPOINT [ \"python\", \"{EXECUTION_FILE}\" ]\n"
    ),
)

RUNTIMES: Dict[str, RuntimeTemplate] = {t.name: t for t in (PYTHON27, PYTHON3)}


def get_runtime(runtime_id: str) -> RuntimeTemplate:
    if not runtime_id:
        raise EmptyInput("runtime")
    try:
        return RUNTIMES[runtime_id]
    except KeyError:
        raise UnsupportedRuntime(runtime_id) from None
