"""PhotoLabel: top-K image classification with ONNX Runtime."""
