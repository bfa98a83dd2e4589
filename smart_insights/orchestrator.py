# smart_insights/orchestrator.py
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

# Import modules (not bare functions) so monkeypatching in tests works correctly
import smart_insights.processors.prompt_builder as _prompts
import smart_insights.validator as _validator
from smart_insights import monitoring
from smart_insights.admission import AdmissionController
from smart_insights.errors import EmptyCompletionError, InsightError, UnsafeQueryError
from smart_insights.llm_registry import LLMRegistry
from smart_insights.response_log import ResponseLog
from smart_insights.schemas import (
    AskRequest,
    AssistantResponse,
    DEBUG_LOG,
    ERROR,
    FINAL_RESPONSE,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STEP_OUTPUT,
)
from smart_insights.source_registry import SourceRegistry

# Orchestration states
STARTED = "started"
SCHEMA_FETCHED = "schema_fetched"
QUERY_GENERATED = "query_generated"
QUERY_EXECUTED = "query_executed"
REPORT_GENERATED = "report_generated"
COMPLETED = "completed"
FAILED = "failed"

SQL_TEMPERATURE = 0.3
REPORT_TEMPERATURE = 0.7


class _Run:
    """Working state of one orchestration. Never shared between threads."""

    def __init__(self, response_id: str, request: AskRequest):
        self.response_id = response_id
        self.request = request
        self.state = STARTED
        self.connector = None
        self.provider = None
        self.schema = ""
        self.sql = ""
        self.result = None
        self.report = ""


class InsightOrchestrator:
    """
    Drives one question through schema discovery, SQL generation, execution
    and report generation, writing progress to the response log as it goes.

    accept() returns immediately; the pipeline runs on a daemon thread that
    holds an admission slot for its whole duration. Every run ends in
    `completed` or `failed`, including when a step raises something that is
    not an InsightError.
    """

    def __init__(self, response_log: ResponseLog, source_registry: SourceRegistry,
                 llm_registry: LLMRegistry, admission: AdmissionController):
        self.response_log = response_log
        self.source_registry = source_registry
        self.llm_registry = llm_registry
        self.admission = admission
        self._tasks: Dict[str, threading.Thread] = {}
        self._tasks_lock = threading.Lock()

    def _make_response_id(self) -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------
    def accept(self, request: AskRequest) -> AssistantResponse:
        response_id = self._make_response_id()
        snapshot = self.response_log.create(response_id, request.question)
        monitoring.logger.info("Accepted question", extra={
            "response_id": response_id,
            "db_configuration": request.db_configuration_name,
            "provider": request.options.llm_provider,
        })

        task = threading.Thread(
            target=self._run_guarded,
            args=(response_id, request),
            name=f"orchestration-{response_id[:8]}",
            daemon=True,
        )
        with self._tasks_lock:
            self._tasks[response_id] = task
        task.start()
        return snapshot

    def wait(self, response_id: str, timeout: Optional[float] = None) -> bool:
        """Join the task for response_id. True if it is no longer running."""
        with self._tasks_lock:
            task = self._tasks.get(response_id)
        if task is None:
            return True
        task.join(timeout)
        return not task.is_alive()

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        with self._tasks_lock:
            tasks = list(self._tasks.values())
        deadline = None if timeout is None else time.time() + timeout
        for task in tasks:
            remaining = None if deadline is None else max(0.0, deadline - time.time())
            task.join(remaining)
        return not any(t.is_alive() for t in tasks)

    def running(self) -> List[str]:
        with self._tasks_lock:
            return [rid for rid, t in self._tasks.items() if t.is_alive()]

    def _run_guarded(self, response_id: str, request: AskRequest) -> None:
        self.admission.acquire()
        try:
            self.run(response_id, request)
        except Exception as e:
            monitoring.logger.exception("Unexpected fault in orchestration", extra={"response_id": response_id})
            monitoring.inc_orchestration("fault")
            self._fail(response_id, f"Unexpected error while processing request: {e}")
        finally:
            self.admission.release()
            with self._tasks_lock:
                self._tasks.pop(response_id, None)

    def _fail(self, response_id: str, text: str) -> None:
        # Each write is attempted on its own so a failing append cannot
        # leave the response stuck in_progress
        try:
            self.response_log.append_update(response_id, ERROR, text)
        except Exception:
            monitoring.logger.exception("Failed to record error update", extra={"response_id": response_id})
        try:
            self.response_log.set_status(response_id, STATUS_FAILED, False)
        except Exception:
            monitoring.logger.exception("Failed to mark response as failed", extra={"response_id": response_id})

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def _pipeline(self) -> List[Tuple[str, str, Callable[[_Run], None], Optional[str]]]:
        # (step, failure summary, handler, state reached on success)
        return [
            ("resolve_source", "Failed to resolve data source configuration", self._resolve_source, None),
            ("fetch_schema", "Failed to fetch database schema", self._fetch_schema, SCHEMA_FETCHED),
            ("resolve_provider", "Failed to resolve LLM provider configuration", self._resolve_provider, None),
            ("generate_query", "Failed to generate SQL query", self._generate_query, QUERY_GENERATED),
            ("execute_query", "Failed to execute query", self._execute_query, QUERY_EXECUTED),
            ("generate_report", "Failed to generate final response", self._generate_report, REPORT_GENERATED),
        ]

    def run(self, response_id: str, request: AskRequest) -> str:
        """Run the pipeline synchronously. Returns the terminal state."""
        run = _Run(response_id, request)
        try:
            for step, summary, handler, next_state in self._pipeline():
                start = time.time()
                try:
                    handler(run)
                except InsightError as e:
                    monitoring.logger.warning("Orchestration step failed", extra={
                        "response_id": response_id, "step": step, "state": run.state, "error": str(e),
                    })
                    run.state = FAILED
                    monitoring.inc_orchestration("failed")
                    self._fail(response_id, f"{summary}: {e}")
                    return run.state
                finally:
                    monitoring.observe_step(start, step)
                if next_state:
                    run.state = next_state

            self.response_log.append_update(response_id, FINAL_RESPONSE, run.report)
            self.response_log.set_status(response_id, STATUS_COMPLETED, True)
            run.state = COMPLETED
            monitoring.inc_orchestration("completed")
            monitoring.logger.info("Orchestration completed", extra={"response_id": response_id})
            return run.state
        finally:
            if run.provider is not None:
                try:
                    run.provider.close()
                except Exception:
                    monitoring.logger.exception("Failed to close LLM provider", extra={"response_id": response_id})

    def _step(self, run: _Run, text: str) -> None:
        self.response_log.append_update(run.response_id, STEP_OUTPUT, text)

    def _debug(self, run: _Run, text: str) -> None:
        self.response_log.append_update(run.response_id, DEBUG_LOG, text)

    def _resolve_source(self, run: _Run) -> None:
        run.connector = self.source_registry.resolve(run.request.db_configuration_name)

    def _fetch_schema(self, run: _Run) -> None:
        self._step(run, "Fetching database schema...")
        info = run.connector.inspect_schema()
        self._debug(run, f"Processed tables: {', '.join(info.object_names()) or '(none)'}")
        run.schema = info.render()
        self._step(run, "Schema retrieval completed")

    def _resolve_provider(self, run: _Run) -> None:
        opts = run.request.options
        run.provider = self.llm_registry.resolve(opts.llm_provider, opts.llm_config)
        self._debug(run, f"Using LLM provider '{opts.llm_provider}' with configuration '{opts.llm_config}'")

    def _generate_query(self, run: _Run) -> None:
        self._step(run, "Generating SQL query... please wait")
        messages = _prompts.build_sql_messages(run.schema, run.request.question)
        completion = run.provider.complete(messages, temperature=SQL_TEMPERATURE)
        sql = _prompts.extract_tagged("sql", completion.content)
        if not sql:
            raise EmptyCompletionError("no SQL query found in LLM response")

        check = _validator.validate_sql_query(sql)
        if not check["valid"]:
            raise UnsafeQueryError(f"generated query rejected: {'; '.join(check['errors'])}")

        run.sql = sql
        self._step(run, f"Generated SQL query:\n{sql}")
        usage = completion.usage
        self._debug(run, f"Token usage: prompt={usage.prompt_tokens}, completion={usage.completion_tokens}, "
                         f"total={usage.total_tokens}")

    def _execute_query(self, run: _Run) -> None:
        self._step(run, "Executing query...")
        run.result = run.connector.execute_query(run.sql)
        self._step(run, "Query executed successfully")
        self._debug(run, f"Query returned {run.result.row_count} rows")
        monitoring.set_last_query_rows(run.result.row_count)

    def _generate_report(self, run: _Run) -> None:
        self._step(run, "Generating report...")
        result_json = _prompts.serialize_result(run.result.rows)
        messages = _prompts.build_report_messages(run.request.question, result_json)
        completion = run.provider.complete(messages, temperature=REPORT_TEMPERATURE)
        report = _prompts.extract_tagged("markdown", completion.content)
        if not report:
            raise EmptyCompletionError("no markdown report found in LLM response")
        run.report = report
        usage = completion.usage
        self._debug(run, f"Token usage: prompt={usage.prompt_tokens}, completion={usage.completion_tokens}, "
                         f"total={usage.total_tokens}")
