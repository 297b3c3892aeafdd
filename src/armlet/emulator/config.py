"""
Execution Engine Configuration
==============================

Engine configuration including memory size, the instruction ceiling and
the extended-opcode limits. Configuration can come from:
- Default values (defined here)
- Constructor arguments
- Environment variables (``EngineConfig.from_env()``)

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
import logging
import os


logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """
    Configuration for one execution engine.

    Attributes:
        memory_size: Bytes of addressable memory; also the code buffer size
        max_instructions: Instruction ceiling; reaching it faults the run
        address_base: Address at which memory is mapped. The translator also
            accepts raw offsets below memory_size.
        rng_seed: Initial seed for the random-number opcode
        default_canvas: (width, height) of a lazily created framebuffer
        max_canvas: Largest (width, height) the canvas opcode allows
        inps_default_max: Line-input buffer size used when x1 is 0
        inps_limit: Upper bound for the line-input buffer size
        filename_limit: Longest file name read from memory
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # MEMORY AND EXECUTION
    # ═══════════════════════════════════════════════════════════════════════════

    memory_size: int = 5120
    max_instructions: int = 10000
    address_base: int = 0
    rng_seed: int = 12345

    # ═══════════════════════════════════════════════════════════════════════════
    # EXTENDED OPCODE LIMITS
    # ═══════════════════════════════════════════════════════════════════════════

    default_canvas: tuple[int, int] = (40, 12)
    max_canvas: tuple[int, int] = (80, 24)
    inps_default_max: int = 64
    inps_limit: int = 256
    filename_limit: int = 63

    # ═══════════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Create EngineConfig from environment variables.

        Environment variables (all optional, integers; 0x prefix accepted):
            ARMLET_MEMORY_SIZE: Memory size in bytes
            ARMLET_MAX_INSTRUCTIONS: Instruction ceiling
            ARMLET_ADDRESS_BASE: Memory base address
            ARMLET_RNG_SEED: Random seed

        Returns:
            EngineConfig with values from environment variables
        """
        config = cls()

        for env_name, attr in (
            ("ARMLET_MEMORY_SIZE", "memory_size"),
            ("ARMLET_MAX_INSTRUCTIONS", "max_instructions"),
            ("ARMLET_ADDRESS_BASE", "address_base"),
            ("ARMLET_RNG_SEED", "rng_seed"),
        ):
            if raw := os.environ.get(env_name):
                try:
                    setattr(config, attr, int(raw, 0))
                except ValueError:
                    logger.warning(f"ignoring {env_name}={raw!r}: not an integer")

        return config
