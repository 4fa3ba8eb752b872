"""A small dense feed-forward network written with plain Python lists.

Hidden layers use ReLU and the output layer uses sigmoid, so every output
lies in (0, 1).  Training is per-sample stochastic gradient descent on
mean squared error.  Networks are tiny (tens of units, at most a few
hundred samples), so list-based matrices are fast enough.
"""

from __future__ import annotations

import json
import math
import random
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Sequence


@dataclass
class NeuralNetworkConfig:
    input_size: int
    hidden_layers: List[int] = field(default_factory=list)
    output_size: int = 1
    learning_rate: float = 0.01


@dataclass
class TrainingSample:
    inputs: List[float]
    targets: List[float]


class Matrix:
    def __init__(self, rows: int, cols: int):
        self.rows = rows
        self.cols = cols
        self.data: List[List[float]] = [[0.0] * cols for _ in range(rows)]

    @classmethod
    def from_array(cls, values: Sequence[float]) -> "Matrix":
        """Column vector from a flat sequence."""
        m = cls(len(values), 1)
        for i, v in enumerate(values):
            m.data[i][0] = float(v)
        return m

    @classmethod
    def from_rows(cls, rows: List[List[float]]) -> "Matrix":
        m = cls(len(rows), len(rows[0]) if rows else 0)
        m.data = [list(map(float, r)) for r in rows]
        return m

    def to_array(self) -> List[float]:
        return [v for row in self.data for v in row]

    def randomize(self) -> None:
        # Xavier-style scale
        scale = math.sqrt(2 / (self.rows + self.cols))
        for row in self.data:
            for j in range(self.cols):
                row[j] = (random.random() * 2 - 1) * scale

    @staticmethod
    def multiply(a: "Matrix", b: "Matrix") -> "Matrix":
        if a.cols != b.rows:
            raise ValueError(f"Matrix dimensions don't match: {a.cols} vs {b.rows}")
        result = Matrix(a.rows, b.cols)
        for i in range(a.rows):
            a_row = a.data[i]
            out_row = result.data[i]
            for j in range(b.cols):
                out_row[j] = sum(a_row[k] * b.data[k][j] for k in range(a.cols))
        return result

    @staticmethod
    def transpose(m: "Matrix") -> "Matrix":
        result = Matrix(m.cols, m.rows)
        for i in range(m.rows):
            for j in range(m.cols):
                result.data[j][i] = m.data[i][j]
        return result

    @staticmethod
    def subtract(a: "Matrix", b: "Matrix") -> "Matrix":
        result = Matrix(a.rows, a.cols)
        result.data = [[x - y for x, y in zip(ra, rb)] for ra, rb in zip(a.data, b.data)]
        return result

    @staticmethod
    def hadamard(a: "Matrix", b: "Matrix") -> "Matrix":
        result = Matrix(a.rows, a.cols)
        result.data = [[x * y for x, y in zip(ra, rb)] for ra, rb in zip(a.data, b.data)]
        return result

    def add(self, other: "Matrix") -> None:
        for row, other_row in zip(self.data, other.data):
            for j in range(self.cols):
                row[j] += other_row[j]

    def scale(self, n: float) -> None:
        for row in self.data:
            for j in range(self.cols):
                row[j] *= n

    def map(self, fn: Callable[[float], float]) -> "Matrix":
        result = Matrix(self.rows, self.cols)
        result.data = [[fn(v) for v in row] for row in self.data]
        return result


def relu(x: float) -> float:
    return max(0.0, x)


def relu_derivative(x: float) -> float:
    return 1.0 if x > 0 else 0.0


def sigmoid(x: float) -> float:
    return 1 / (1 + math.exp(-max(-500.0, min(500.0, x))))


def sigmoid_derivative(y: float) -> float:
    """Derivative expressed in terms of the sigmoid's output."""
    return y * (1 - y)


def tanh(x: float) -> float:
    return math.tanh(x)


def tanh_derivative(y: float) -> float:
    return 1 - y * y


class NeuralNetwork:
    def __init__(self, config: NeuralNetworkConfig):
        self.config = config
        self.weights: List[Matrix] = []
        self.biases: List[Matrix] = []
        self.trained = False
        self.training_loss: List[float] = []
        self._initialize()

    def _initialize(self) -> None:
        layers = [self.config.input_size, *self.config.hidden_layers, self.config.output_size]
        for n_in, n_out in zip(layers, layers[1:]):
            w = Matrix(n_out, n_in)
            w.randomize()
            self.weights.append(w)
            b = Matrix(n_out, 1)
            b.randomize()
            self.biases.append(b)

    def _forward(self, inputs: Sequence[float]) -> List[Matrix]:
        """Return the input vector followed by every layer's activations."""
        current = Matrix.from_array(inputs)
        outputs = [current]
        last = len(self.weights) - 1
        for i, (w, b) in enumerate(zip(self.weights, self.biases)):
            current = Matrix.multiply(w, current)
            current.add(b)
            current = current.map(relu if i < last else sigmoid)
            outputs.append(current)
        return outputs

    def predict(self, inputs: Sequence[float]) -> List[float]:
        return self._forward(inputs)[-1].to_array()

    def train(self, data: Sequence[TrainingSample], epochs: int = 1000, batch_size: int = 32) -> None:
        """Train with per-sample updates; records the mean loss of each epoch.

        ``batch_size`` only groups the iteration order.  Weights are
        updated after every sample.
        """
        if not data:
            return
        for _ in range(epochs):
            total_loss = 0.0
            shuffled = list(data)
            random.shuffle(shuffled)
            for start in range(0, len(shuffled), batch_size):
                for sample in shuffled[start:start + batch_size]:
                    total_loss += self._train_single(sample.inputs, sample.targets)
            self.training_loss.append(total_loss / len(data))
        self.trained = True

    def _train_single(self, inputs: Sequence[float], targets: Sequence[float]) -> float:
        outputs = self._forward(inputs)
        error = Matrix.subtract(Matrix.from_array(targets), outputs[-1])
        errors = error.to_array()
        loss = sum(e * e for e in errors) / len(errors)

        last = len(self.weights) - 1
        for i in range(last, -1, -1):
            derivative = sigmoid_derivative if i == last else relu_derivative
            gradient = Matrix.hadamard(outputs[i + 1].map(derivative), error)
            gradient.scale(self.config.learning_rate)

            self.weights[i].add(Matrix.multiply(gradient, Matrix.transpose(outputs[i])))
            self.biases[i].add(gradient)

            # propagated through the weights just updated
            if i > 0:
                error = Matrix.multiply(Matrix.transpose(self.weights[i]), error)
        return loss

    def serialize(self) -> str:
        return json.dumps({
            "config": asdict(self.config),
            "weights": [w.data for w in self.weights],
            "biases": [b.data for b in self.biases],
            "trained": self.trained,
            "trainingLoss": self.training_loss,
        })

    @classmethod
    def deserialize(cls, payload: str) -> "NeuralNetwork":
        data = json.loads(payload)
        nn = cls(NeuralNetworkConfig(**data["config"]))
        nn.weights = [Matrix.from_rows(w) for w in data["weights"]]
        nn.biases = [Matrix.from_rows(b) for b in data["biases"]]
        nn.trained = bool(data.get("trained"))
        nn.training_loss = list(data.get("trainingLoss") or [])
        return nn

    def is_ready(self) -> bool:
        return self.trained

    def get_loss_history(self) -> List[float]:
        return self.training_loss
