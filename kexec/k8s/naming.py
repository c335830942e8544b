from dataclasses import dataclass

from ..core.ids import UUID_LENGTH, is_uuid


@dataclass(frozen=True)
class Invocation:
    """
    One execution of a function.

    Not stored anywhere by the cluster side of the pipeline: the job name
    encodes both the function name and the invocation id, so an Invocation
    can always be rebuilt from ``job_name`` and the namespace.
    """
    function_name: str
    invocation_id: str
    namespace: str

    @property
    def job_name(self) -> str:
        return job_name_for(self.function_name, self.invocation_id)

    @property
    def label_selector(self) -> str:
        return f"job-name={self.job_name}"

    @classmethod
    def from_job_name(cls, job_name: str, namespace: str) -> "Invocation":
        function_name = job_name[:-(UUID_LENGTH + 1)]
        separator = job_name[-(UUID_LENGTH + 1):-UUID_LENGTH]
        invocation_id = job_name[-UUID_LENGTH:]
        if not function_name or separator != "-" or not is_uuid(invocation_id):
            raise ValueError(f"{job_name!r} is not a <function>-<invocation id> job name")
        return cls(function_name=function_name, invocation_id=invocation_id, namespace=namespace)


def job_name_for(function_name: str, invocation_id: str) -> str:
    return f"{function_name}-{invocation_id}"
