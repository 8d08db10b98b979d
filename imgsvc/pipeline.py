"""变换流水线。

固定五个阶段，按顺序执行，每个阶段都可跳过，上一阶段的输出即下一阶段的输入：

1. orientation  旋转/翻转/镜像/质量，一次几何引擎调用；即使都没设置也会按质量重新编码
2. resize       宽高都为正才执行
3. crop         宽高都为正才执行，固定居中裁剪
4. convert      指定了目标格式才执行，执行后按内容复核格式
5. filters      有任一滤镜才执行，由滤镜引擎单独解码、处理、编码

任一阶段失败即中止，抛出 EngineError，中间结果全部丢弃。
同一参数重复执行不会收敛（重复旋转、有损重编码），调用方不要盲目重试。
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from .context import Deadline
from .engines import (
    GRAVITY_CENTRE,
    FilterEngine,
    GeometryEngine,
    GeometryOps,
    PillowFilterEngine,
    PillowGeometryEngine,
)
from .errors import ConversionMismatchError, DeadlineExceededError, EngineError, ServiceError
from .formats import detect_format
from .transforms import TransformSpec

logger = logging.getLogger(__name__)


class TransformPipeline:
    def __init__(
        self,
        geometry: Optional[GeometryEngine] = None,
        filters: Optional[FilterEngine] = None,
    ):
        self.geometry = geometry or PillowGeometryEngine()
        self.filters = filters or PillowFilterEngine()

    def _stage(self, name: str, fn: Callable[[], bytes]) -> bytes:
        try:
            out = fn()
        except ServiceError:
            raise
        except Exception as e:
            raise EngineError(name, e) from e
        logger.info("%s 完成", name)
        return out

    def run(self, data: bytes, spec: TransformSpec, deadline: Optional[Deadline] = None) -> bytes:
        deadline = deadline or Deadline.never()
        buf = data

        deadline.check("orientation")
        orientation = GeometryOps(
            rotate=spec.rotate,
            flip=spec.flip,
            mirror=spec.mirror,
            quality=spec.quality,
        )
        buf = self._stage("orientation", lambda: self.geometry.apply(data, orientation))

        if spec.resize.is_set:
            deadline.check("resize")
            ops = GeometryOps(quality=spec.quality, width=spec.resize.width, height=spec.resize.height)
            buf = self._stage("resize", lambda b=buf: self.geometry.apply(b, ops))

        if spec.crop.is_set:
            deadline.check("crop")
            ops = GeometryOps(
                quality=spec.quality,
                width=spec.crop.width,
                height=spec.crop.height,
                gravity=GRAVITY_CENTRE,
            )
            buf = self._stage("crop", lambda b=buf: self.geometry.apply(b, ops))

        if spec.target_format:
            deadline.check("convert")
            ops = GeometryOps(quality=spec.quality, target_format=spec.target_format)
            buf = self._stage("convert", lambda b=buf: self.geometry.apply(b, ops))
            actual = detect_format(buf)
            if actual != spec.target_format:
                raise ConversionMismatchError(spec.target_format, actual or "unknown")

        if spec.filters.any:
            deadline.check("filters")
            buf = self._stage("filters", lambda b=buf: self.filters.apply(b, spec.filters))

        return buf


class PipelineExecutor:
    """把流水线放进固定大小的线程池执行，避免并发解码把内存耗尽。"""

    def __init__(self, pipeline: Optional[TransformPipeline] = None, max_workers: Optional[int] = None):
        self.pipeline = pipeline or TransformPipeline()
        self.max_workers = max_workers or os.cpu_count() or 1
        self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pipeline")

    def run(self, data: bytes, spec: TransformSpec, deadline: Optional[Deadline] = None) -> bytes:
        deadline = deadline or Deadline.never()
        future = self._pool.submit(self.pipeline.run, data, spec, deadline)
        try:
            return future.result(timeout=deadline.remaining())
        except FutureTimeoutError:
            # 已开始的阶段无法打断，但其结果会被丢弃，后续阶段在下一次检查时中止
            future.cancel()
            raise DeadlineExceededError("图片处理超时")

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
