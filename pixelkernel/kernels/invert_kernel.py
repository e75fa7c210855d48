def invert(block_idx, block_dim, thread_idx, pixels, width, height):
    x = block_idx[0] * block_dim[0] + thread_idx[0]
    y = block_idx[1] * block_dim[1] + thread_idx[1]
    if x < width and y < height:
        index = y * width + x
        pixels[index] = pixels[index] ^ 0xFFFFFFFF
