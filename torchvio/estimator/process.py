"""
Timestamp-ordered dispatch loop.

``Process`` owns a priority queue of messages keyed by ``(ts, sequence)`` and
drains it either synchronously (``drain``) or from a single worker thread
(``start``/``stop``). ``EstimatorProcess`` executes each data message against
an estimator and forwards the results to whichever publishers are registered.
"""
import heapq
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from .base import Estimator
from .messages import BlockMessage, EstimatorMessage, MessageKind, TerminateMessage
from .publishers import CanvasPublisher, FullStatePublisher, MapPublisher, PosePublisher


class ProcessError(RuntimeError):
    """A message failed while the worker thread was executing it."""


class Process(ABC):
    """Single consumer of a timestamp-ordered message queue."""

    def __init__(self, name: str = "process"):
        self.name = name
        self.state_lock = threading.Lock()
        self._queue: List[Tuple[float, int, EstimatorMessage]] = []
        self._sequence = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[ProcessError] = None
        self.num_handled = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def failed(self) -> bool:
        return self._error is not None

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def enqueue(self, message: EstimatorMessage):
        """
        Add a message to the queue.

        Raises:
            ProcessError: If an earlier message failed on the worker thread
        """
        self._raise_if_failed()
        self._push(message)

    def _push(self, message: EstimatorMessage):
        with self._cond:
            heapq.heappush(self._queue, (message.ts, next(self._sequence), message))
            self._cond.notify()

    def _pop(self, block: bool) -> Optional[EstimatorMessage]:
        with self._cond:
            while block and not self._queue:
                self._cond.wait()
            if not self._queue:
                return None
            return heapq.heappop(self._queue)[2]

    def handle(self, message: EstimatorMessage) -> bool:
        """
        Handle control messages.

        Returns:
            True if the message was a control message and has been consumed
        """
        if message.kind == MessageKind.BLOCK:
            message.ready.set()
            return True
        if message.kind == MessageKind.TERMINATE:
            return True
        return False

    @abstractmethod
    def process_message(self, message: EstimatorMessage):
        """Execute a data message."""
        pass

    def _dispatch(self, message: EstimatorMessage):
        if self.handle(message):
            return
        with self.state_lock:
            self.process_message(message)
        self.num_handled += 1

    def drain(self) -> int:
        """
        Synchronously handle every queued message in timestamp order.

        Exceptions propagate directly to the caller. Not to be mixed with a
        running worker thread.

        Returns:
            Number of data messages handled
        """
        if self.running:
            raise RuntimeError(f"{self.name}: drain() called while the worker thread is running")
        self._raise_if_failed()
        handled = self.num_handled
        while True:
            message = self._pop(block=False)
            if message is None:
                break
            self._dispatch(message)
        return self.num_handled - handled

    def start(self):
        if self.running:
            return
        self._raise_if_failed()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        self.logger.info(f"{self.name} started")

    def stop(self, timeout: Optional[float] = None):
        """
        Handle the remaining messages, then stop the worker thread.

        Raises:
            ProcessError: If a message failed on the worker thread
        """
        if self._thread is not None:
            if self._thread.is_alive():
                self._push(TerminateMessage())
            self._thread.join(timeout)
            self._thread = None
            self.logger.info(f"{self.name} stopped after {self.num_handled} messages")
        self._raise_if_failed()

    def wait(self):
        """
        Block until every message enqueued before this call has been handled.

        Without a worker thread the queue is drained on the calling thread.
        """
        if not self.running:
            self.drain()
            return
        block = BlockMessage()
        self.enqueue(block)
        # The worker may die between the enqueue and the barrier
        while not block.ready.wait(0.1):
            if not self.running:
                break
        self._raise_if_failed()

    def _run(self):
        while True:
            message = self._pop(block=True)
            if message.kind == MessageKind.TERMINATE:
                break
            try:
                self._dispatch(message)
            except Exception as exc:
                self.logger.exception(f"{self.name} aborted while handling {message!r}")
                error = ProcessError(f"{self.name} failed on {message!r}: {exc}")
                error.__cause__ = exc
                self._error = error
                self._release_waiters()
                break

    def _release_waiters(self):
        # Wake every pending wait() so it can observe the failure
        with self._cond:
            for _, _, message in self._queue:
                if message.kind == MessageKind.BLOCK:
                    message.ready.set()

    def _raise_if_failed(self):
        if self._error is not None:
            raise self._error


DATA_KINDS = (MessageKind.VISUAL, MessageKind.INERTIAL)


class EstimatorProcess(Process):
    """
    Drives an estimator from the message queue and routes its outputs.

    Each publisher is optional and independent of the others. Publishing is
    fire-and-forget: failures are logged and the loop carries on.
    """

    def __init__(
        self,
        estimator: Estimator,
        canvas_publisher: Optional[CanvasPublisher] = None,
        pose_publisher: Optional[PosePublisher] = None,
        map_publisher: Optional[MapPublisher] = None,
        full_state_publisher: Optional[FullStatePublisher] = None,
        max_pts_to_publish: int = 100,
        name: str = "estimator",
    ):
        """
        Initialize the estimator process.

        Args:
            estimator: Estimator the messages are executed against
            canvas_publisher: Receives (ts, image) for visual messages with viz set
            pose_publisher: Receives (ts, pose, covariance) for visual messages and
                (ts, pose, camera_to_body) for inertial messages with viz set
            map_publisher: Receives (ts, npts, positions, covariances, ids)
            full_state_publisher: Receives (ts, state, accel_calib, gyro_calib, covariance)
            max_pts_to_publish: Cap on the landmarks handed to the map publisher
            name: Worker thread name
        """
        super().__init__(name)
        if max_pts_to_publish <= 0:
            raise ValueError(f"max_pts_to_publish must be positive, got {max_pts_to_publish}")

        self.estimator = estimator
        self.canvas_publisher = canvas_publisher
        self.pose_publisher = pose_publisher
        self.map_publisher = map_publisher
        self.full_state_publisher = full_state_publisher
        self.max_pts_to_publish = int(max_pts_to_publish)

        self._handlers: Dict[MessageKind, Callable[[EstimatorMessage], None]] = (
            self.build_handlers()
        )
        missing = [kind.name for kind in DATA_KINDS if kind not in self._handlers]
        if missing:
            raise TypeError(f"{self.__class__.__name__} has no handler for {missing}")

    def build_handlers(self) -> Dict[MessageKind, Callable[[EstimatorMessage], None]]:
        return {
            MessageKind.VISUAL: self._on_visual,
            MessageKind.INERTIAL: self._on_inertial,
        }

    def process_message(self, message: EstimatorMessage):
        handler = self._handlers.get(message.kind)
        if handler is None:
            raise TypeError(f"Unsupported message {message!r}")
        message.execute(self.estimator)
        handler(message)

    def _on_visual(self, message: EstimatorMessage):
        ts = message.ts
        estimator = self.estimator

        if message.viz and self.canvas_publisher is not None:
            canvas = estimator.canvas()
            if canvas is not None:
                self._publish(self.canvas_publisher, ts, canvas)

        if self.pose_publisher is not None:
            self._publish(
                self.pose_publisher, ts, estimator.pose(), estimator.state_covariance()
            )

        if self.map_publisher is not None:
            npts, positions, covariances, ids = estimator.instate_features(
                self.max_pts_to_publish
            )
            self._publish(self.map_publisher, ts, npts, positions, covariances, ids)

        if self.full_state_publisher is not None:
            self._publish(
                self.full_state_publisher,
                ts,
                estimator.state(),
                estimator.accel_calibration(),
                estimator.gyro_calibration(),
                estimator.state_covariance(),
            )

    def _on_inertial(self, message: EstimatorMessage):
        if message.viz and self.pose_publisher is not None:
            self._publish(
                self.pose_publisher,
                message.ts,
                self.estimator.pose(),
                self.estimator.camera_to_body(),
            )

    def _publish(self, publisher, *args):
        try:
            publisher.publish(*args)
        except Exception:
            self.logger.exception(
                f"{publisher.__class__.__name__} failed to publish at ts={args[0]:.6f}"
            )
