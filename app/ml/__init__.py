from app.ml.neural_network import Matrix, NeuralNetwork, NeuralNetworkConfig, TrainingSample
from app.ml.spending_predictor import SpendingPredictor, get_spending_predictor

__all__ = [
    "Matrix",
    "NeuralNetwork",
    "NeuralNetworkConfig",
    "TrainingSample",
    "SpendingPredictor",
    "get_spending_predictor",
]
