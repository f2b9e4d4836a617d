"""
A simple MCP server for mathematical operations.
"""

from pydantic import Field

from mcpwire import MCPServer, TextResource

GEOMETRY_FORMULAS = {
    "Area": {
        "rectangle": "A = length * width",
        "triangle": "A = (1/2) * base * height",
        "circle": "A = πr²",
        "trapezoid": "A = (1/2)(b₁ + b₂)h",
    },
    "Volume": {
        "cube": "V = s³",
        "rectangular_prism": "V = length * width * height",
        "cylinder": "V = πr²h",
        "sphere": "V = (4/3)πr³",
    },
}


def build_math_server() -> MCPServer:
    """Server factory, also usable as `mcpwire --server examples.math_mcp.math_mcp:build_math_server`"""

    math_mcp = MCPServer(
        name="MathServer", version="0.1.0", instructions="This is a simple MCP server for mathematical operations."
    )

    # -- Resources --
    @math_mcp.resource("math://formulas/geometry")
    def get_geometry_formulas() -> dict[str, dict[str, str]]:
        """Geometry formulas reference for all types"""
        return GEOMETRY_FORMULAS

    math_mcp.resource.add(
        TextResource("math://constants/pi", "pi", "3.14159265359", description="The ratio of a circle's circumference")
    )

    # -- Tools --
    @math_mcp.tool()
    def add(
        a: float = Field(description="The first float number"),
        b: float = Field(description="The second float number"),
    ) -> float:
        "Add two numbers"
        return a + b

    @math_mcp.tool()
    def subtract(
        a: float = Field(description="The first float number"),
        b: float = Field(description="The second float number"),
    ) -> float:
        "Subtract two numbers"
        return a - b

    @math_mcp.tool()
    def multiply(
        a: float = Field(description="The first float number"),
        b: float = Field(description="The second float number"),
    ) -> float:
        "Multiply two numbers"
        return a * b

    @math_mcp.tool()
    def divide(
        a: float = Field(description="The first float number"),
        b: float = Field(description="The second float number"),
    ) -> float:
        "Divide two numbers"
        if b == 0:
            raise ValueError("Cannot divide by zero")
        return a / b

    return math_mcp
