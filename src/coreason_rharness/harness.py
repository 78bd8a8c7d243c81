# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

import time

import anyio
from loguru import logger

from coreason_rharness.artifacts import ArtifactExtractor, remove_document
from coreason_rharness.composer import ScriptComposer
from coreason_rharness.config import HarnessConfig
from coreason_rharness.exceptions import ProcessSpawnError, SchemaParseError, ScriptError
from coreason_rharness.factory import HarnessFactory
from coreason_rharness.heuristics import detect_target_variable, find_unknown_columns, infer_output_mode
from coreason_rharness.introspection import SchemaIntrospector
from coreason_rharness.models import (
    ExecutionRequest,
    ExecutionResult,
    InteractiveDocument,
    ProcessOutput,
    Schema,
)
from coreason_rharness.runner import ProcessRunner
from coreason_rharness.utils.veritas import VeritasIntegrator
from coreason_rharness.workspace import WorkspaceManager, WorkspaceSession

DEFAULT_SESSION = "default"


class HarnessAsync:
    """Async-native R execution harness (The Core).

    Composes, runs and post-processes snippets against per-session
    workspaces. Every execution, introspection and reset of a session runs
    under that session's lock.
    """

    def __init__(
        self,
        config: HarnessConfig | None = None,
        runner: ProcessRunner | None = None,
        extractor: ArtifactExtractor | None = None,
    ):
        """Initializes the HarnessAsync service.

        Args:
            config: Configuration for the harness.
            runner: Optional ProcessRunner. Defaults to the configured runtime.
            extractor: Optional ArtifactExtractor. Defaults to one wired to the configured storage.
        """
        self.config = config or HarnessConfig()
        self.runner = runner or HarnessFactory.get_runner(self.config)
        self.extractor = extractor or HarnessFactory.get_extractor(self.config)
        self.composer = ScriptComposer(self.config)
        self.introspector = SchemaIntrospector(self.config, self.runner)
        self.workspaces = WorkspaceManager(self.config)
        self.veritas = VeritasIntegrator(enabled=self.config.enable_audit_logging)

    async def __aenter__(self) -> "HarnessAsync":
        """Restores durable workspaces and starts reaping idle sessions."""
        await self.workspaces.restore_on_startup()
        self.workspaces.start_reaper()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Stops the reaper and persists workspaces to durable storage."""
        await self.workspaces.stop_reaper()
        await self.workspaces.persist_on_shutdown()

    def _script_error(self, output: ProcessOutput) -> ScriptError:
        detail = self.extractor.significant_stderr(output.stderr)
        if not detail:
            detail = output.stdout.strip() or f"Rscript exited with status {output.exit_code}"
        return ScriptError(detail, exit_code=output.exit_code, stderr=output.stderr)

    async def _introspect(self, session: WorkspaceSession, variable: str) -> Schema:
        snapshot = self.workspaces.snapshot_path(session.session_id)
        try:
            schema = await self.introspector.introspect(snapshot if snapshot.exists() else None, variable)
        except SchemaParseError as e:
            logger.warning(f"Schema introspection of {variable} failed: {e}")
            schema = Schema(variable=variable)
        session.schemas[variable] = schema
        return schema

    @staticmethod
    def _unknown_column_hint(session: WorkspaceSession, code: str) -> str | None:
        unknown: list[str] = []
        for variable, schema in session.schemas.items():
            unknown.extend(f"{variable}${c}" for c in find_unknown_columns(code, variable, schema))
        if not unknown:
            return None
        return f"Unknown columns referenced: {', '.join(unknown)}"

    async def execute(self, request: ExecutionRequest, session_id: str = DEFAULT_SESSION) -> ExecutionResult:
        """Executes a snippet in the session's workspace.

        Script failures, missing artifacts and unparseable introspection
        output are reported inside the result.

        Args:
            request: The snippet and its output options.
            session_id: Workspace to run against.

        Returns:
            ExecutionResult: Text, artifacts, error and optional schema.

        Raises:
            ValueError: If session_id is malformed.
            ProcessSpawnError: If the interpreter is missing, crashed or timed out.
        """
        session = await self.workspaces.get_or_create_session(session_id)

        async with session.lock:
            await self.veritas.log_pre_execution(request.source_code, session_id)
            self.workspaces.discard_documents(session)

            mode = request.output_mode or infer_output_mode(request.source_code)
            binding = self.workspaces.binding(session_id)
            paths = self.workspaces.allocate_artifacts(session_id)
            script = self.composer.compose(request, mode, binding, paths)

            logger.info("Executing R snippet", session_id=session_id, mode=mode.value)
            try:
                output = await self.runner.run(script, self.config.execution_timeout)
            except ProcessSpawnError:
                paths.plot_path.unlink(missing_ok=True)
                remove_document(paths.document_path)
                raise

            errors: list[str] = []
            if output.exit_code != 0:
                script_error = self._script_error(output)
                logger.warning(f"R script failed with exit code {output.exit_code}: {script_error}")
                errors.append(f"R execution error: {script_error}")

            extraction = await self.extractor.extract(mode, paths, output, session_id)
            errors.extend(extraction.errors)
            session.documents.extend(
                paths.document_path for a in extraction.artifacts if isinstance(a, InteractiveDocument)
            )

            updated_schema: Schema | None = None
            if request.refresh_schema:
                fallback = request.target_variable or self.config.default_target_variable
                variable = detect_target_variable(request.source_code, fallback)
                updated_schema = await self._introspect(session, variable)

            if errors:
                hint = self._unknown_column_hint(session, request.source_code)
                if hint:
                    errors.append(hint)

            session.last_accessed = time.time()

        return ExecutionResult(
            text_output=extraction.text,
            error_message="\n".join(errors) if errors else None,
            artifacts=extraction.artifacts,
            updated_schema=updated_schema,
            exit_code=output.exit_code,
            execution_duration=output.duration,
        )

    async def describe(self, variable: str, session_id: str = DEFAULT_SESSION) -> Schema:
        """Describes a variable in the session's workspace without running any snippet.

        Returns:
            Schema: The variable's schema. Empty when the output could not be parsed.
        """
        session = await self.workspaces.get_or_create_session(session_id)
        async with session.lock:
            schema = await self._introspect(session, variable)
            session.last_accessed = time.time()
        return schema

    async def reset(self, session_id: str = DEFAULT_SESSION) -> None:
        """Clears the session's workspace, durable copy and documents. Idempotent."""
        await self.workspaces.reset(session_id)


class Harness:
    """Sync Facade for HarnessAsync (The Facade).

    Wraps HarnessAsync and executes methods via anyio.run.
    """

    def __init__(
        self,
        config: HarnessConfig | None = None,
        runner: ProcessRunner | None = None,
        extractor: ArtifactExtractor | None = None,
    ):
        self._async = HarnessAsync(config, runner, extractor)

    def __enter__(self) -> "Harness":
        """Context entry point."""
        anyio.run(self._async.__aenter__)
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context exit point."""
        anyio.run(self._async.__aexit__, exc_type, exc_val, exc_tb)

    def execute(self, request: ExecutionRequest, session_id: str = DEFAULT_SESSION) -> ExecutionResult:
        """Executes a snippet synchronously."""
        # No reaper task outlives anyio.run, so idle sessions are reaped per call.
        self._async.workspaces.reap_idle()
        return anyio.run(self._async.execute, request, session_id)

    def describe(self, variable: str, session_id: str = DEFAULT_SESSION) -> Schema:
        return anyio.run(self._async.describe, variable, session_id)

    def reset(self, session_id: str = DEFAULT_SESSION) -> None:
        anyio.run(self._async.reset, session_id)
