from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

from compiletrace.errors import ModuleRenderFailure
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.settings import ModuleConfig

from .base import CombinedOutput, LazyReference, Module, ModuleOutput
from .context import ModuleContext


class ModuleRegistry:
    """
    Ordered collection of report modules.

    Registry order is the merge order: `render_all` folds module outputs
    left to right in the order modules were registered, whatever order they
    finished rendering in.
    """

    def __init__(self, modules: Optional[Iterable[Module]] = None):
        self._modules: List[Module] = []
        self.logger = get_error_logger("ModuleRegistry")
        for module in modules or ():
            self.register(module)

    def register(self, module: Module) -> "ModuleRegistry":
        if any(m.id == module.id for m in self._modules):
            raise ValueError(f"module id {module.id!r} is already registered")
        self._modules.append(module)
        return self

    def modules(self) -> List[Module]:
        return list(self._modules)

    def get(self, module_id: str) -> Module:
        for module in self._modules:
            if module.id == module_id:
                return module
        raise KeyError(module_id)

    def __len__(self) -> int:
        return len(self._modules)

    def render_all(
        self,
        ctx: ModuleContext,
        max_workers: int = 1,
        skip_failed: bool = False,
    ) -> CombinedOutput:
        """
        Render every module and fold the outputs in registry order.

        Parameters
        ----------
        ctx : ModuleContext
        max_workers : int
            Values above 1 render modules concurrently on a thread pool.
        skip_failed : bool
            Log and skip failing modules instead of raising.

        Raises
        ------
        ModuleRenderFailure
            For the first failing module in registry order, unless
            `skip_failed` is set.
        """
        if max_workers > 1 and len(self._modules) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                futures = [pool.submit(m.render, ctx) for m in self._modules]
                # Barrier: every render finishes before the fold starts.
                results = []
                for future in futures:
                    try:
                        results.append((future.result(), None))
                    except Exception as e:
                        results.append((None, e))
        else:
            results = []
            for module in self._modules:
                try:
                    results.append((module.render(ctx), None))
                except Exception as e:
                    results.append((None, e))
                    if not skip_failed:
                        break

        combined = CombinedOutput()
        for module, (output, error) in zip(self._modules, results):
            if error is not None:
                if not skip_failed:
                    raise ModuleRenderFailure(module.id, error) from error
                self.logger.error(f"[CompileTrace] module {module.id} skipped: {error}")
                continue
            if not isinstance(output, ModuleOutput):
                raise ModuleRenderFailure(
                    module.id, TypeError(f"render() returned {type(output).__name__}")
                )
            combined = combined.merge(CombinedOutput.from_module(module.id, output))
        return combined

    def materialize(self, reference: LazyReference, ctx: ModuleContext) -> str:
        return self.get(reference.module_id).materialize(reference, ctx)

    @staticmethod
    def with_defaults(config: Optional[ModuleConfig] = None) -> "ModuleRegistry":
        """Preset for regular compile traces."""
        from .cache import CacheModule
        from .chromium_trace import ChromiumTraceModule
        from .compilation_metrics import CompilationMetricsModule
        from .compile_artifacts import CompileArtifactsModule
        from .guards import GuardsModule
        from .stack_trie import StackTrieModule
        from .symbolic_shapes import SymbolicShapesModule
        from .tensor_metadata import TensorMetadataModule

        config = config or ModuleConfig()
        return ModuleRegistry(
            [
                CompileArtifactsModule(config),
                GuardsModule(config),
                CacheModule(config),
                CompilationMetricsModule(config),
                ChromiumTraceModule(config),
                SymbolicShapesModule(config),
                TensorMetadataModule(config),
                StackTrieModule(config),
            ]
        )

    @staticmethod
    def for_export_mode(config: Optional[ModuleConfig] = None) -> "ModuleRegistry":
        """Preset for export traces."""
        from .export import ExportModule
        from .symbolic_shapes import SymbolicShapesModule

        config = config or ModuleConfig()
        return ModuleRegistry([ExportModule(config), SymbolicShapesModule(config)])

    @staticmethod
    def for_config(config: ModuleConfig) -> "ModuleRegistry":
        if config.export_mode:
            return ModuleRegistry.for_export_mode(config)
        return ModuleRegistry.with_defaults(config)
