"""
The Controller class associates reconcile logic with one custom resource kind.
Each ODLM kind has its own Controller in the controllers package.
"""

# Standard
from typing import Optional, Tuple
import abc
import datetime

# First Party
import alog

# Local
from . import config
from .reconcile import RequeueParams
from .session import Session
from .utils import abstractclassproperty, classproperty

## Globals #####################################################################

log = alog.use_channel("CTRLR")


## Controller ##################################################################


class Controller(abc.ABC):
    """This class represents a controller for a single kubernetes custom
    resource kind. A reconcile re-derives the complete desired and observed
    state from the cluster on every call, so running it twice without an
    external change performs no additional writes.
    """

    ## Class Properties ########################################################

    # Derived classes must have class properties for group, version, and kind.
    # NOTE: pylint is very confused by the use of these property decorators, so
    #   we need to liberally ignore warnings.

    @abstractclassproperty  # noqa: B027
    def group(cls) -> str:
        """The apiVersion group for the resource this controller manages"""

    @abstractclassproperty  # noqa: B027
    def version(cls) -> str:
        """The apiVersion version for the resource this controller manages"""

    @abstractclassproperty  # noqa: B027
    def kind(cls) -> str:
        """The kind for the resource this controller manages"""

    @classproperty
    def api_version(cls) -> str:  # pylint: disable=no-self-argument
        """The full apiVersion for the resource this controller manages"""
        return f"{cls.group}/{cls.version}"  # pylint: disable=no-member

    @classproperty
    def finalizer(cls) -> Optional[str]:  # pylint: disable=no-self-argument
        """The finalizer used by this Controller"""
        if cls.has_finalizer:  # pylint: disable=using-constant-test
            return f"finalizers.{cls.kind.lower()}.{cls.group}"  # pylint: disable=no-member
        return None

    @classproperty
    def has_finalizer(cls) -> bool:  # pylint: disable=no-self-argument
        """If the derived class has an implementation of finalize, it has a
        finalizer and must be called for deletion events
        """
        return cls.finalize is not Controller.finalize

    ## Construction ############################################################

    def __init__(self):
        # Make sure the class properties are present and not empty
        assert self.group, "Controller.group must be a non-empty string"
        assert self.version, "Controller.version must be a non-empty string"
        assert self.kind, "Controller.kind must be a non-empty string"

    @classmethod
    def __str__(cls):
        """Stringify with the GVK"""
        return f"Controller({cls.group}/{cls.version}/{cls.kind})"

    ## Abstract Interface ######################################################

    @abc.abstractmethod
    def reconcile(self, session: Session):
        """Converge the cluster toward the state declared by the CR in the
        session and publish the observed status.

        Error Semantics: Per-item failures should be collected and raised
        together as a MultiError once every item has been attempted.

        Args:
            session:  Session
                The current reconciliation session
        """

    ## Base Class Interface ####################################################

    def finalize(self, session: Session):  # noqa: B027
        """Clean up before the CR is removed. Controllers that implement this
        get a finalizer added to their CRs.

        Args:
            session:  Session
                The current reconciliation session
        """

    def should_requeue(self, session: Session) -> Tuple[bool, Optional[RequeueParams]]:
        """Determine if the current reconcile request should be re-queued.

        The default implementation never requeues for deleted resources and
        otherwise requeues after the short requeue interval while the phase
        has not settled.

        Args:
            session:  Session
                The current reconciliation session

        Returns:
            requeue:  bool
                True if the reconciliation request should be re-queued
            requeue_params:  RequeueParams
                Parameters of requeue request. Can be None if requeue is False.
        """
        if session.deleting:
            return False, None
        phase = (session.status or {}).get("phase")
        if phase in self.stable_phases():
            return False, None
        log.debug2("Requeuing %s/%s in phase %s", session.namespace, session.name, phase)
        return True, RequeueParams(
            requeue_after=datetime.timedelta(
                seconds=float(config.requeue_after_seconds)
            )
        )

    def stable_phases(self) -> Tuple[str, ...]:
        """The status phases in which this controller waits for watch events
        rather than requeuing on its own
        """
        return ("Init", "Running")

    ## Public Interface ########################################################

    def run_reconcile(self, session: Session, is_finalizer: bool = False):
        """Perform a reconciliation iteration for this controller on a given
        session

        Args:
            session:  Session
                The session for the CR being reconciled
            is_finalizer:  bool
                If true, the logic in finalize is run, otherwise the logic in
                reconcile is called
        """
        if is_finalizer:
            log.debug("[%s] Running as finalizer", session.id)
            self.finalize(session)
        else:
            self.reconcile(session)
