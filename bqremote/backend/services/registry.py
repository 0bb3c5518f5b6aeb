from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .errors import ArityError, UnknownFunctionError
from .value_codec import BigQueryType, decode_value, encode_value, ensure_supported

logger = logging.getLogger(__name__)

# userDefinedContext で関数名を渡すときのキー
FUNCTION_CONTEXT_KEY = "function"


@dataclass
class RemoteFunction:
    name: str
    arg_types: List[BigQueryType]
    return_type: BigQueryType
    handler: Callable[..., Any]
    variadic: bool = False
    description: Optional[str] = None

    def check_arity(self, row: Sequence[Any]) -> None:
        expected = len(self.arg_types)
        if self.variadic:
            if len(row) < expected:
                raise ArityError(
                    f"{self.name} expects at least {expected} arguments, got {len(row)}"
                )
        elif len(row) != expected:
            raise ArityError(
                f"{self.name} expects {expected} arguments, got {len(row)}"
            )

    def _type_at(self, index: int) -> BigQueryType:
        if index < len(self.arg_types):
            return self.arg_types[index]
        return self.arg_types[-1]

    def invoke(self, row: Sequence[Any]) -> Any:
        """Decode one row of arguments, call the handler and encode its result."""

        self.check_arity(row)
        args = [decode_value(self._type_at(i), raw) for i, raw in enumerate(row)]
        result = self.handler(*args)
        return encode_value(self.return_type, result)

    def signature(self) -> str:
        types = [t.value for t in self.arg_types]
        if self.variadic and types:
            types[-1] = f"{types[-1]}..."
        return f"{self.name}({', '.join(types)}) -> {self.return_type.value}"


@dataclass
class FunctionRegistry:
    functions: Dict[str, RemoteFunction] = field(default_factory=dict)

    def register(
        self,
        name: str,
        handler: Callable[..., Any],
        *,
        args: Sequence[BigQueryType | str],
        returns: BigQueryType | str,
        variadic: bool = False,
        description: Optional[str] = None,
    ) -> RemoteFunction:
        if not name:
            raise ValueError("function name must not be empty")
        if name in self.functions:
            raise ValueError(f"function '{name}' is already registered")
        arg_types = [ensure_supported(t) for t in args]
        if variadic and not arg_types:
            raise ValueError("variadic functions need at least one argument type")
        function = RemoteFunction(
            name=name,
            arg_types=arg_types,
            return_type=ensure_supported(returns),
            handler=handler,
            variadic=variadic,
            description=description or (handler.__doc__ or "").strip() or None,
        )
        self.functions[name] = function
        logger.debug("Registered remote function %s", function.signature())
        return function

    def function(
        self,
        name: str,
        *,
        args: Sequence[BigQueryType | str],
        returns: BigQueryType | str,
        variadic: bool = False,
        description: Optional[str] = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(handler: Callable[..., Any]) -> Callable[..., Any]:
            self.register(
                name,
                handler,
                args=args,
                returns=returns,
                variadic=variadic,
                description=description,
            )
            return handler

        return decorator

    def get(self, name: str) -> RemoteFunction:
        function = self.functions.get(name)
        if function is None:
            raise UnknownFunctionError(f"unknown remote function: {name}")
        return function

    def resolve(
        self,
        name: Optional[str],
        user_defined_context: Optional[Mapping[str, str]] = None,
    ) -> RemoteFunction:
        if name:
            return self.get(name)
        context_name = (user_defined_context or {}).get(FUNCTION_CONTEXT_KEY)
        if not context_name:
            raise UnknownFunctionError(
                f"no function name given; set userDefinedContext.{FUNCTION_CONTEXT_KEY}"
            )
        return self.get(context_name)

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": fn.name,
                "arg_types": [t.value for t in fn.arg_types],
                "return_type": fn.return_type.value,
                "variadic": fn.variadic,
                "signature": fn.signature(),
                "description": fn.description,
            }
            for fn in sorted(self.functions.values(), key=lambda f: f.name)
        ]
