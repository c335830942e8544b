"""
Build context assembly.

A build context is a private directory under the staging root holding exactly
what the engine needs to build one function image: the ``exec`` entrypoint,
the runtime ``Dockerfile`` and optionally a ``.dockerignore``. Each context is
named ``<user>-<time based uuid>`` so concurrent submissions never share a
directory, and it is removed when the ``BuildContext`` is closed.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..core.errors import EmptyInput, StagingUnavailable
from ..core.ids import new_time_based_id
from ..core.naming import validate_function_name, validate_user_id
from .runtimes import DOCKERFILE, DOCKERIGNORE, EXECUTION_FILE, RuntimeTemplate, get_runtime

logger = logging.getLogger(__name__)


@dataclass
class BuildContext:
    path: str
    user_id: str
    function_name: str
    runtime: RuntimeTemplate
    keep: bool = False
    closed: bool = field(default=False, init=False)

    @property
    def execution_file(self) -> str:
        return os.path.join(self.path, EXECUTION_FILE)

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self.keep:
            logger.info(f"Keeping build context {self.path}")
            return
        shutil.rmtree(self.path, ignore_errors=True)
        logger.debug(f"Removed build context {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class BuildContextAssembler:
    def __init__(self, root: str, params_env: str = "SERVERLESS_PARAMS", keep_contexts: bool = False):
        self.root = root
        self.params_env = params_env
        self.keep_contexts = keep_contexts

    def assemble(
        self,
        user_id: str,
        function_name: str,
        runtime_id: str,
        code: str,
        ignore_patterns: Optional[Iterable[str]] = None,
    ) -> BuildContext:
        """
        Validate the submission and write a fresh build context for it.

        Nothing touches the filesystem until every input check has passed.
        """
        if not function_name:
            raise EmptyInput("function name")
        if not runtime_id:
            raise EmptyInput("runtime")
        if not code or not code.strip():
            raise EmptyInput("code")
        validate_user_id(user_id)
        validate_function_name(function_name)
        runtime = get_runtime(runtime_id)

        ctx_dir = os.path.join(self.root, f"{user_id}-{new_time_based_id()}")
        try:
            os.makedirs(self.root, exist_ok=True)
            # mkdir (not makedirs) so an existing directory is never reused
            os.mkdir(ctx_dir)
        except OSError as e:
            logger.error(f"Failed to create build context directory {ctx_dir}: {e}")
            raise StagingUnavailable(ctx_dir, e) from e

        context = BuildContext(
            path=ctx_dir,
            user_id=user_id,
            function_name=function_name,
            runtime=runtime,
            keep=self.keep_contexts,
        )
        try:
            self._write(ctx_dir, EXECUTION_FILE,
                        runtime.render_entrypoint(code, function_name, self.params_env))
            self._write(ctx_dir, DOCKERFILE, runtime.dockerfile)
            if ignore_patterns:
                self._write(ctx_dir, DOCKERIGNORE, "\n".join(ignore_patterns) + "\n")
        except OSError as e:
            logger.error(f"Failed to write build context {ctx_dir}: {e}")
            shutil.rmtree(ctx_dir, ignore_errors=True)
            raise StagingUnavailable(ctx_dir, e) from e

        logger.info(f"Assembled build context {ctx_dir} for {user_id}/{function_name} ({runtime.name})")
        return context

    @staticmethod
    def _write(ctx_dir: str, name: str, content: str):
        with open(os.path.join(ctx_dir, name), "w", encoding="utf-8") as f:
            f.write(content)
