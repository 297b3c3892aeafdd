"""
Character-Cell Framebuffer
==========================

The graphics extended opcodes draw into a small grid of character cells,
each with its own colour attribute.

Grid:
- Created lazily at 40×12 by the first drawing opcode, or sized explicitly
  by the canvas opcode (up to 80×24)
- Each cell holds one character byte and one attribute byte

Attribute byte:
    7  6  5  4  3  2  1  0
    -  bg bg bg -  fg fg fg

Colours 0-7 follow the ANSI order (black, red, green, yellow, blue,
magenta, cyan, white). Clearing fills every cell with a space and
attribute 0x70.

Rendering:
- ``render_ansi()``: terminal output with colour escape sequences
- ``render_text()``: plain characters, one line per row
- ``render_image()``: PNG bytes (requires Pillow)

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from typing import Optional


# RGB values for the eight ANSI colours, used by render_image()
PALETTE = (
    (0, 0, 0),
    (205, 49, 49),
    (13, 188, 121),
    (229, 229, 16),
    (36, 114, 200),
    (188, 63, 188),
    (17, 168, 205),
    (229, 229, 229),
)

CLEAR_ATTRIBUTE = 0x70


class Framebuffer:
    """
    Character grid with per-cell colour.

    The framebuffer starts inactive. Drawing calls activate it at the
    default size; ``set_canvas()`` activates it at a chosen size.

    Attributes:
        width: Columns
        height: Rows
        fg: Current foreground colour (0-7)
        bg: Current background colour (0-7)
        active: True once any graphics opcode has run

    Example:
        >>> fb = Framebuffer()
        >>> fb.set_canvas(5, 3)
        >>> fb.box(0, 0, 5, 3)
        >>> print(fb.render_text())
        +---+
        |   |
        +---+
    """

    def __init__(
        self,
        default_size: tuple[int, int] = (40, 12),
        max_size: tuple[int, int] = (80, 24),
    ):
        self.default_size = default_size
        self.max_size = max_size
        self.width, self.height = default_size
        self.fg = 7
        self.bg = 0
        self.active = False
        self._chars: list[bytearray] = []
        self._attrs: list[bytearray] = []

    # =========================================================================
    # State
    # =========================================================================

    def ensure_active(self) -> None:
        """Activate at the default size (cleared) if not yet active."""
        if not self.active:
            self.width, self.height = self.default_size
            self.active = True
            self.clear()

    def clear(self) -> None:
        """Fill every cell with a space and the clear attribute."""
        self._chars = [bytearray(b" " * self.width) for _ in range(self.height)]
        self._attrs = [bytearray([CLEAR_ATTRIBUTE] * self.width) for _ in range(self.height)]

    def set_colors(self, fg: int, bg: int) -> None:
        self.fg = fg & 7
        self.bg = bg & 7

    def reset_colors(self) -> None:
        self.fg = 7
        self.bg = 0

    def set_canvas(self, width: int, height: int) -> None:
        """
        Resize, activate and clear.

        Zero width means 40 and zero height means 10; sizes are clamped
        to the maximum canvas.
        """
        width &= 0xFF
        height &= 0xFF
        if width < 1:
            width = 40
        if height < 1:
            height = 10
        self.width = min(width, self.max_size[0])
        self.height = min(height, self.max_size[1])
        self.active = True
        self.clear()

    # =========================================================================
    # Drawing
    # =========================================================================

    def plot(self, x: int, y: int, char: int) -> None:
        """Set one cell in the current colours. Out-of-bounds is ignored."""
        if 0 <= x < self.width and 0 <= y < self.height:
            self._chars[y][x] = char if char else 0x20
            self._attrs[y][x] = self.fg | (self.bg << 4)

    def line(self, x1: int, y1: int, x2: int, y2: int, char: int) -> None:
        """Draw a horizontal or vertical run; diagonal lines draw nothing."""
        if y1 == y2:
            for x in range(min(x1, x2), max(x1, x2) + 1):
                self.plot(x, y1, char)
        elif x1 == x2:
            for y in range(min(y1, y2), max(y1, y2) + 1):
                self.plot(x1, y, char)

    def box(self, x: int, y: int, w: int, h: int) -> None:
        """Draw a ``+ - |`` border and blank the interior."""
        right = x + w - 1
        bottom = y + h - 1

        self.plot(x, y, ord("+"))
        for i in range(1, w - 1):
            self.plot(x + i, y, ord("-"))
        self.plot(right, y, ord("+"))

        for j in range(1, h - 1):
            self.plot(x, y + j, ord("|"))
            for i in range(1, w - 1):
                self.plot(x + i, y + j, ord(" "))
            self.plot(right, y + j, ord("|"))

        self.plot(x, bottom, ord("+"))
        for i in range(1, w - 1):
            self.plot(x + i, bottom, ord("-"))
        self.plot(right, bottom, ord("+"))

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_char_at(self, x: int, y: int) -> int:
        if not (0 <= x < self.width and 0 <= y < self.height) or not self.active:
            raise ValueError(f"Invalid position ({x}, {y})")
        return self._chars[y][x]

    def get_attr_at(self, x: int, y: int) -> int:
        if not (0 <= x < self.width and 0 <= y < self.height) or not self.active:
            raise ValueError(f"Invalid position ({x}, {y})")
        return self._attrs[y][x]

    def render_text(self) -> str:
        """Grid contents as text, rows separated by newlines."""
        if not self.active:
            return ""
        return "\n".join(row.decode("latin-1") for row in self._chars)

    def render_ansi(self) -> bytes:
        """
        Grid contents with ANSI colour escapes.

        A colour sequence is emitted whenever the attribute changes along a
        row; every row ends with a reset and a newline.
        """
        if not self.active:
            return b""
        out = bytearray()
        for chars, attrs in zip(self._chars, self._attrs):
            last = None
            for char, attr in zip(chars, attrs):
                if attr != last:
                    out += f"\x1b[3{attr & 7};4{(attr >> 4) & 7}m".encode()
                    last = attr
                out.append(char)
            out += b"\x1b[0m\n"
        return bytes(out)

    def render_image(self, cell_width: int = 8, cell_height: int = 14) -> Optional[bytes]:
        """
        Render the grid as a PNG image (requires Pillow).

        Args:
            cell_width: Pixel width of one cell
            cell_height: Pixel height of one cell

        Returns:
            PNG image bytes, or None if Pillow is not available or the
            framebuffer was never activated
        """
        try:
            from PIL import Image, ImageDraw
            import io
        except ImportError:
            return None

        if not self.active:
            return None

        img = Image.new("RGB", (self.width * cell_width, self.height * cell_height))
        draw = ImageDraw.Draw(img)

        for y in range(self.height):
            for x in range(self.width):
                attr = self._attrs[y][x]
                left, top = x * cell_width, y * cell_height
                draw.rectangle(
                    [left, top, left + cell_width - 1, top + cell_height - 1],
                    fill=PALETTE[(attr >> 4) & 7],
                )
                char = chr(self._chars[y][x])
                if char != " ":
                    draw.text((left + 1, top + 1), char, fill=PALETTE[attr & 7])

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()
