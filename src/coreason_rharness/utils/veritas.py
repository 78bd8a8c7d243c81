import hashlib

from loguru import logger


class VeritasIntegrator:
    """
    Audit trail for submitted snippets.

    Every snippet is hashed before it runs; the hash, not the code, is what
    lands in the audit log.
    """

    def __init__(self, service_name: str = "coreason-rharness", enabled: bool = True):
        self.service_name = service_name
        self.enabled = enabled

    async def log_pre_execution(self, code: str, session_id: str) -> str:
        """
        Log the code execution attempt. Returns a hash of the code.
        """
        code_hash = hashlib.sha256(code.encode("utf-8")).hexdigest()

        if self.enabled:
            logger.info(
                f"AUDIT: R execution requested (hash={code_hash[:12]})",
                event_type="RHARNESS_EXECUTION_START",
                service=self.service_name,
                session_id=session_id,
                code_hash=code_hash,
                code_length=len(code),
            )

        return code_hash
