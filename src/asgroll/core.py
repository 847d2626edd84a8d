import logging
import threading
import time
import uuid
from dataclasses import asdict
from typing import Callable, List, Optional

from rich.console import Console
from rich.markup import escape

from .constants import (
    DEFAULT_ACCOUNTS_FILE,
    DEFAULT_IMAGE_POLL_SECONDS,
    DEFAULT_IMAGE_TIMEOUT_MINUTES,
    DEFAULT_UPDATE_DELAY_SECONDS,
    DEFAULT_UPDATE_TIMEOUT_MINUTES,
)
from .errors import CredentialNotFound, DeployerError, DeploymentCancelled, DeploymentInterrupted
from .errors_catalog import actionable_error, has_entry
from .models import DeploymentArguments, DeploymentContext
from .services.accounts import AccountStore
from .services.command_runner import CommandRunner
from .services.events import (
    FAILED,
    STARTED,
    SUCCEEDED,
    ConsoleReporter,
    EventBus,
    RecordingReporter,
    StepEvent,
)
from .services.infrastructure import InfrastructureClient
from .services.manifest import ManifestService
from .services.updater import CommandUpdater, DelayUpdater
from .steps import Step, StepServices, default_steps

console = Console()
logger = logging.getLogger("asgroll")


class Deployer:
    """Runs one re-image and roll deployment against an auto scaling group."""

    def __init__(
        self,
        group_name: str,
        account: str,
        instance_warmup: int,
        healthy_percentage: int,
        accounts_file: Optional[str] = None,
        report_file: Optional[str] = None,
        image_timeout_minutes: float = DEFAULT_IMAGE_TIMEOUT_MINUTES,
        image_poll_seconds: float = DEFAULT_IMAGE_POLL_SECONDS,
        update_command: Optional[str] = None,
        update_timeout_minutes: float = DEFAULT_UPDATE_TIMEOUT_MINUTES,
        update_delay_seconds: float = DEFAULT_UPDATE_DELAY_SECONDS,
        use_private_address: bool = False,
        account_store: Optional[AccountStore] = None,
        infrastructure_factory: Optional[Callable] = None,
        updater=None,
        observers: Optional[list] = None,
        steps: Optional[List[Step]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.arguments = DeploymentArguments(
            group_name=group_name,
            account=account,
            instance_warmup=instance_warmup,
            healthy_percentage=healthy_percentage,
        )
        if image_timeout_minutes <= 0:
            raise DeployerError("Image timeout must be greater than zero.")
        if image_poll_seconds <= 0:
            raise DeployerError("Image poll interval must be greater than zero.")

        self.image_timeout_seconds = float(image_timeout_minutes) * 60
        self.image_poll_seconds = float(image_poll_seconds)
        self.use_private_address = use_private_address
        self.sleep = sleep
        self.run_id = uuid.uuid4().hex[:10]

        self.account_store = account_store or AccountStore(
            accounts_file or DEFAULT_ACCOUNTS_FILE, logger=logger
        )
        self.infrastructure_factory = infrastructure_factory or InfrastructureClient.from_credential
        self.updater = updater or self._build_updater(
            update_command, update_timeout_minutes, update_delay_seconds
        )
        self.steps = steps if steps is not None else default_steps()

        self.manifest_service = ManifestService(manifest_file=report_file, logger=logger)
        self.history = RecordingReporter()
        if observers is None:
            reporter = ConsoleReporter(console)
            reporter.set_titles({step.name: step.title for step in self.steps})
            observers = [reporter]
        self.event_bus = EventBus(logger, [self.history, self.manifest_service, *observers])

        self.context: Optional[DeploymentContext] = None
        self.current_step_name: Optional[str] = None
        self._cancel_event = threading.Event()

    def _build_updater(self, update_command, update_timeout_minutes, update_delay_seconds):
        if update_command:
            timeout = float(update_timeout_minutes) * 60 if update_timeout_minutes else None
            return CommandUpdater(
                logger=logger,
                command_runner=CommandRunner(logger=logger),
                command_template=update_command,
                timeout=timeout,
            )
        return DelayUpdater(logger=logger, delay_seconds=float(update_delay_seconds))

    def request_cancel(self):
        """Stop before the next step; the step in flight runs to completion."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested. Stopping after the current step.")
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def _resolve_credential(self):
        credential = self.account_store.resolve(self.arguments.account)
        if credential is None:
            raise CredentialNotFound(
                actionable_error("credential_not_found", account=self.arguments.account)
            )
        return credential

    def _run_step(self, step: Step, ctx: DeploymentContext, services: StepServices) -> DeploymentContext:
        if self.cancel_requested:
            raise DeploymentCancelled(f"Deployment cancelled before step '{step.name}'.", step=step.name)

        self.current_step_name = step.name
        self.event_bus.emit(StepEvent(step.name, step.phase, STARTED))

        try:
            ctx, detail = step.run(ctx, services)
        except DeployerError as exc:
            exc.step = exc.step or step.name
            self.event_bus.emit(StepEvent(step.name, step.phase, FAILED, str(exc)))
            raise
        except (Exception, KeyboardInterrupt) as exc:
            self.event_bus.emit(StepEvent(step.name, step.phase, FAILED, str(exc) or exc.__class__.__name__))
            raise

        self.event_bus.emit(StepEvent(step.name, step.phase, SUCCEEDED, detail))
        self.current_step_name = None
        return ctx

    def run_pipeline(self, ctx: DeploymentContext, services: StepServices) -> DeploymentContext:
        for step in self.steps:
            ctx = self._run_step(step, ctx, services)
            self.context = ctx
        return ctx

    def _record_facts(self):
        if self.context is None:
            return
        for key, value in self.context.facts():
            self.manifest_service.set_fact(key, value)

    def _catalog_kwargs(self, step: Optional[str]):
        selection = self.context.selection if self.context else None
        return {
            "group": self.arguments.group_name,
            "account": self.arguments.account,
            "instance_id": selection.instance_id if selection else "<none>",
            "image_id": (self.context.image_id if self.context else None) or "<none>",
            "step": step or "<none>",
        }

    def _report_failure(self, exc: Exception, step: Optional[str]):
        console.print(
            f"[bold red]Deployment failed[/bold red] at step [bold]{step or 'run'}[/bold]: {escape(str(exc))}"
        )
        completed = [
            event.step for event in self.history.events if event.status == SUCCEEDED
        ]
        if completed:
            console.print(f"[dim]Completed steps: {', '.join(completed)}[/dim]")
        if self.context is not None:
            for label, value in self.context.facts():
                console.print(f"   {label}: {escape(str(value))}")

        code = getattr(exc, "code", None)
        if code and code != "credential_not_found" and has_entry(code):
            message = actionable_error(code, **self._catalog_kwargs(step))
            console.print(f"[yellow]{escape(message)}[/yellow]")
        console.print("[dim]Infrastructure was left as-is; no rollback was attempted.[/dim]")

    def run(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None

        try:
            logger.info("Starting deployment %s on %s", self.run_id, self.arguments.group_name)
            self.manifest_service.start_run(run_id=self.run_id, arguments=asdict(self.arguments))

            credential = self._resolve_credential()
            infrastructure = self.infrastructure_factory(credential, logger)
            services = StepServices(
                infrastructure=infrastructure,
                updater=self.updater,
                logger=logger,
                image_timeout_seconds=self.image_timeout_seconds,
                image_poll_seconds=self.image_poll_seconds,
                use_private_address=self.use_private_address,
                sleep=self.sleep,
            )

            self.context = DeploymentContext(arguments=self.arguments)
            self.run_pipeline(self.context, services)
            self._record_facts()

            console.print(
                f"[bold green]Deployment finished.[/bold green] Instance refresh started on "
                f"{self.arguments.group_name} with image {self.context.image_id}."
            )
            logger.info("Deployment %s finished", self.run_id)
            manifest_status = "success"
            exit_code = 0
            return exit_code

        except CredentialNotFound as exc:
            console.print(f"[bold red]\\[Error][/bold red] {escape(str(exc))}")
            logger.error(str(exc))
            manifest_error = str(exc)
            return exit_code
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            self._record_facts()
            self._report_failure(DeploymentInterrupted("Interrupted."), self.current_step_name)
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
            return exit_code
        except DeploymentCancelled as exc:
            logger.warning(str(exc))
            self._record_facts()
            self._report_failure(exc, exc.step)
            manifest_status = "aborted"
            manifest_error = str(exc)
            return exit_code
        except DeployerError as exc:
            logger.error(str(exc))
            self._record_facts()
            self._report_failure(exc, exc.step)
            manifest_error = str(exc)
            return exit_code
        except Exception as exc:
            logger.exception("Unexpected error")
            self._record_facts()
            self._report_failure(exc, self.current_step_name)
            manifest_error = str(exc)
            return exit_code
        finally:
            self.manifest_service.finalize(manifest_status, error=manifest_error)
