from typing import Sequence

import numpy as np


def project_onto_simplex(y: Sequence[float]) -> np.ndarray:
    """
    将 n 维向量投影到概率单纯形上
        Dn = { x : x n-dim, 1 >= x >= 0, sum(x) = 1}
    返回在欧氏距离意义下离 y 最近的点，算法见 http://arxiv.org/abs/1101.6081

    Args:
        y: 任意有限实数向量

    Returns:
        np.ndarray: 投影结果 x，满足 x >= 0 且 sum(x) == 1

    Raises:
        ValueError: 输入为空或包含非有限值
    """
    # 复制一份，不修改调用方的数据
    y = np.array(y, dtype=float)
    if y.ndim != 1 or y.size == 0:
        raise ValueError(f"Expected a non-empty 1-d vector, got shape {y.shape}")
    if not np.all(np.isfinite(y)):
        raise ValueError(f"Cannot project non-finite vector {y}")

    m = y.size
    # 降序排序
    s = np.sort(y)[::-1]
    cumsum = np.cumsum(s)

    # 取第一个满足 (前 k 项和 - 1) / k >= s[k] 的 k
    # 该条件一旦成立，对更大的 k 也都成立，因此只有第一个 k 给出正确的阈值
    tmax = (cumsum[-1] - 1) / m
    for k in range(1, m):
        t = (cumsum[k - 1] - 1) / k
        if t >= s[k]:
            tmax = t
            break

    return np.maximum(y - tmax, 0)
