"""
Plug-in points for the erasure code algorithms.

The encode/decode mathematics live outside this package; implementations
register themselves under the `erasure_code` name a codec refers to.
"""
from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, Dict, Tuple

from ..errors import RaidConfigurationError
from ..models import Codec
from ..storage import FileSystem


class Encoder(ABC):
    """Writes the parity file for a source file"""

    def __init__(self, codec: Codec):
        self.codec = codec

    @abstractmethod
    def encode_file(self, src_fs: FileSystem, src_path: str,
                    parity_fs: FileSystem, parity_path: str,
                    meta_replication: int) -> None:
        pass


class Decoder(ABC):
    """Reconstructs one erased block of a source file"""

    def __init__(self, codec: Codec):
        self.codec = codec

    @abstractmethod
    def fix_erased_block(self, src_fs: FileSystem, src_path: str,
                         parity_fs: FileSystem, parity_path: str,
                         block_size: int, corrupt_offset: int, limit: int,
                         out: BinaryIO) -> None:
        pass


EncoderFactory = Callable[[Codec], Encoder]
DecoderFactory = Callable[[Codec], Decoder]


class ErasureCodeRegistry:
    """Maps an erasure_code name to its encoder and decoder factories"""

    def __init__(self):
        self._factories: Dict[str, Tuple[EncoderFactory, DecoderFactory]] = {}

    def register(self, name: str, encoder_factory: EncoderFactory,
                 decoder_factory: DecoderFactory) -> None:
        self._factories[name] = (encoder_factory, decoder_factory)

    def _lookup(self, codec: Codec) -> Tuple[EncoderFactory, DecoderFactory]:
        try:
            return self._factories[codec.erasure_code]
        except KeyError:
            raise RaidConfigurationError(
                f"No erasure code implementation registered for "
                f"{codec.erasure_code} (codec {codec.id})"
            )

    def encoder_for_codec(self, codec: Codec) -> Encoder:
        return self._lookup(codec)[0](codec)

    def decoder_for_codec(self, codec: Codec) -> Decoder:
        return self._lookup(codec)[1](codec)

    def __contains__(self, name: str) -> bool:
        return name in self._factories
