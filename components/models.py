from torch import nn
import torch
import torch.nn.functional as F

from components.settings import ModelSettings

class CausalConvBlock(nn.Module):
    """Conv1d padded on the left only, so step t never sees t+1; then BatchNorm, ReLU, Dropout."""
    def __init__(self, in_channels: int, out_channels: int, kernel_size: int, dropout_rate: float = 0.0):
        super().__init__()
        self.left_pad = kernel_size - 1
        self.conv = nn.Conv1d(in_channels, out_channels, kernel_size)
        self.norm = nn.BatchNorm1d(out_channels)
        self.relu = nn.ReLU()
        self.dropout = nn.Dropout(dropout_rate)

    def forward(self, x):
        # x: (B, C, T)
        x = F.pad(x, (self.left_pad, 0))
        return self.dropout(self.relu(self.norm(self.conv(x))))

class GRUClassifier(nn.Module):
    """
    [causal conv blocks] -> stacked GRUs -> dropout -> [dense stack] -> Linear -> Sigmoid.
    Only the last GRU collapses the sequence (final hidden state, both directions concatenated when bidirectional).
    Each output is an independent probability for one (symbol, horizon day) label.
    """
    def __init__(self, input_size: int, output_size: int, settings: ModelSettings):
        super().__init__()
        self.convs = nn.ModuleList()
        channels = input_size
        for filters in settings.conv_filters:
            self.convs.append(CausalConvBlock(channels, int(filters), settings.conv_kernel_size, settings.conv_dropout))
            channels = int(filters)
        directions = 2 if settings.bidirectional else 1
        self.grus = nn.ModuleList()
        for units in settings.gru_units:
            self.grus.append(nn.GRU(input_size=channels, hidden_size=int(units), batch_first=True,
                                    bidirectional=settings.bidirectional))
            channels = int(units) * directions
        self.recurrent_dropout = nn.Dropout(settings.recurrent_dropout)
        self.dropout = nn.Dropout(settings.dropout_rate)
        dense = []
        for units in settings.dense_units:
            dense += [nn.Linear(channels, int(units)), nn.ReLU(), nn.Dropout(settings.dropout_rate)]
            channels = int(units)
        self.dense = nn.Sequential(*dense)
        self.fc_out = nn.Linear(channels, output_size)
        self.sigmoid = nn.Sigmoid()

    def forward(self, x):
        if x.dim() == 2:
            x = x.unsqueeze(1) # (B, F) -> (B, 1, F)
        # x: (B, T, F)
        if len(self.convs) > 0:
            z = x.transpose(1, 2) # (B, F, T)
            for block in self.convs:
                z = block(z)
            x = z.transpose(1, 2)
        h_n = None
        for i, gru in enumerate(self.grus):
            out, h_n = gru(x) # h_n: (directions, B, H)
            if i < len(self.grus) - 1:
                x = self.recurrent_dropout(out)
        last = h_n.transpose(0, 1).reshape(h_n.size(1), -1) # (B, directions*H)
        z = self.dense(self.dropout(last))
        return self.sigmoid(self.fc_out(z))
