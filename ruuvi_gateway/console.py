"""Publisher that writes samples to the console as JSON lines."""

import logging
import sys
from typing import List, Optional, TextIO

from .devices import DeviceResolver
from .models import DecodedSample
from .publisher import Listener, PublisherOptions, PublisherPipeline


class ConsolePublisher(PublisherPipeline):
    """Writes one JSON document per sample to a text stream (stdout by default)."""

    destination = 'console'

    def __init__(
        self,
        listener: Listener,
        options: Optional[PublisherOptions] = None,
        device_resolver: Optional[DeviceResolver] = None,
        stream: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(listener, options, logger)
        self.device_resolver = device_resolver
        self.stream = stream

    def _annotate(self, sample: DecodedSample) -> DecodedSample:
        if self.device_resolver is None or sample.device_id or not sample.mac_address:
            return sample
        return sample.with_device(self.device_resolver.lookup(sample.mac_address))

    async def publish(self, samples: List[DecodedSample]) -> None:
        stream = self.stream or sys.stdout
        for sample in samples:
            stream.write(self._annotate(sample).to_json() + '\n')
        stream.flush()
