"""Source construction: one decode branch per file, feeding one mixer input."""

from dataclasses import dataclass, field
from pathlib import Path

from core.errors import AbxError
from core.media import Decoder, FileReader, MediaGraph, MixerInput
from utils.error_handler import safe_operation
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Source:
    """Non-owning view of one decode branch. The graph owns the stages."""

    path: Path
    reader: int
    decoder: int
    mixer_input: MixerInput = field(repr=False)

    @property
    def source_id(self) -> int:
        return self.decoder

    @property
    def muted(self) -> bool:
        return self.mixer_input.muted

    @property
    def is_linked(self) -> bool:
        return self.mixer_input.is_linked

    def mute(self):
        self.mixer_input.set_muted(True)

    def unmute(self):
        self.mixer_input.set_muted(False)


class SourceBuilder:
    """Builds decode branches into ``graph`` ending at the mixer ``mixer_handle``."""

    def __init__(self, graph: MediaGraph, mixer_handle: int):
        self.graph = graph
        self.mixer_handle = mixer_handle

    def build(self, path) -> Source:
        """
        Create reader -> decoder, reserve a mixer input and return the Source muted.

        Linking the decoded stream to the reserved input happens later, when
        the decoder posts ``LinkReady`` on the bus during preroll. If the
        graph is already running the caller brings the decoder up with
        ``graph.sync_state`` once the source is registered.

        Raises:
            ConfigurationError: bad path or stage cannot be created/linked
            ResourceExhausted: the mixer has no free input
        """
        graph = self.graph
        created = []
        port = None
        try:
            reader = FileReader(path)
            created.append(graph.add(reader))

            decoder = Decoder()
            created.append(graph.add(decoder))
            graph.link(reader.handle, decoder.handle)

            mixer = graph.get(self.mixer_handle)
            port = mixer.request_pad()
            port.set_muted(True)

            source = Source(
                path=reader.location,
                reader=reader.handle,
                decoder=decoder.handle,
                mixer_input=port,
            )
        except AbxError:
            self._discard(created, port)
            raise

        logger.info(f"🎵 Added source {source.path.name} (decoder={source.decoder}, sink_{port.index})")
        return source

    def discard(self, source: Source):
        """Remove a built source's stages and release its mixer input."""
        self._discard([source.reader, source.decoder], source.mixer_input)

    def _discard(self, handles, port):
        if port is not None:
            with safe_operation("releasing mixer input", silent=True):
                port.mixer.release_pad(port)
        for handle in reversed(handles):
            with safe_operation("removing stage", silent=True):
                self.graph.remove(handle)
