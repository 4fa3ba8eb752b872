import random

import pytest

from app.ml.neural_network import Matrix, NeuralNetwork, NeuralNetworkConfig, TrainingSample


def test_matrix_multiply_and_transpose():
    a = Matrix.from_rows([[1, 2], [3, 4]])
    b = Matrix.from_array([1, 1])
    assert Matrix.multiply(a, b).to_array() == [3.0, 7.0]
    assert Matrix.transpose(a).data == [[1.0, 3.0], [2.0, 4.0]]
    with pytest.raises(ValueError):
        Matrix.multiply(b, b)


def test_outputs_are_in_unit_interval():
    nn = NeuralNetwork(NeuralNetworkConfig(input_size=3, hidden_layers=[4], output_size=2))
    out = nn.predict([0.5, -2.0, 10.0])
    assert len(out) == 2
    assert all(0 < v < 1 for v in out)


def test_training_reduces_loss():
    random.seed(7)
    nn = NeuralNetwork(NeuralNetworkConfig(input_size=2, hidden_layers=[6], output_size=1, learning_rate=0.1))
    data = [
        TrainingSample(inputs=[0.0, 0.0], targets=[0.2]),
        TrainingSample(inputs=[1.0, 1.0], targets=[0.8]),
    ]
    nn.train(data, epochs=200, batch_size=1)
    history = nn.get_loss_history()
    assert len(history) == 200
    assert history[-1] < history[0]
    assert nn.is_ready() is True


def test_training_on_empty_data_is_a_noop():
    nn = NeuralNetwork(NeuralNetworkConfig(input_size=2, output_size=1))
    nn.train([], epochs=10)
    assert nn.get_loss_history() == []
    assert nn.is_ready() is False


def test_serialize_round_trip_keeps_predictions():
    nn = NeuralNetwork(NeuralNetworkConfig(input_size=3, hidden_layers=[5, 4], output_size=2))
    nn.train([TrainingSample(inputs=[0.1, 0.2, 0.3], targets=[0.5, 0.5])], epochs=3)
    restored = NeuralNetwork.deserialize(nn.serialize())
    assert restored.config == nn.config
    assert restored.predict([0.3, 0.2, 0.1]) == pytest.approx(nn.predict([0.3, 0.2, 0.1]))
    assert restored.get_loss_history() == nn.get_loss_history()
    assert restored.is_ready() is True
